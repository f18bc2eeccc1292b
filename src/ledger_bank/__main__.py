import uvicorn

from . import settings


def main() -> None:
    uvicorn.run("ledger_bank.app:app", host=settings.HOST, port=settings.PORT, log_level="info")


if __name__ == "__main__":
    main()
