from datetime import date, datetime, timedelta, timezone

from fastapi import FastAPI, HTTPException

app = FastAPI(title="Mock Open Banking Server", version="1.0.0")

# Each bank lives under its own prefix: base URL http://localhost:8001/<bank>
# vbank: approves consents, one account with monthly telecom and utility bills
# abank: consents stay "awaitingAuthorization"
# sbank: approves consents, account listing fails with 503
BANKS = {"vbank": "approved", "abank": "awaitingAuthorization", "sbank": "approved"}


def _monthly(day: int, months: int, amount: str, counterparty: str, info: str, prefix: str):
    today = date.today()
    items = []
    for i in range(months, 0, -1):
        month_index = today.month - 1 - i
        year, month = today.year + month_index // 12, month_index % 12 + 1
        booked = datetime(year, month, day, 12, 0, tzinfo=timezone.utc)
        items.append({
            "transactionId": f"{prefix}-{i}",
            "amount": {"amount": amount, "currency": "RUB"},
            "creditDebitIndicator": "Debit",
            "bookingDateTime": booked.isoformat().replace("+00:00", "Z"),
            "transactionInformation": info,
            "counterpartyAccount": counterparty,
        })
    return items


def _bank(bank: str) -> str:
    if bank not in BANKS:
        raise HTTPException(status_code=404, detail="unknown bank")
    return bank


@app.get("/health")
def health(): return {"status": "ok"}


@app.post("/{bank}/auth/bank-token")
def bank_token(bank: str, client_id: str = "", client_secret: str = ""):
    _bank(bank)
    return {"access_token": f"token-{bank}", "token_type": "bearer", "expires_in": 3600}


@app.post("/{bank}/account-consents/request")
def consent(bank: str, body: dict):
    status = BANKS[_bank(bank)]
    return {"data": {"consentId": f"consent-{bank}-{body.get('client_id')}", "status": status}}


@app.get("/{bank}/accounts")
def accounts(bank: str, client_id: str):
    _bank(bank)
    if bank == "sbank":
        raise HTTPException(status_code=503, detail="accounts temporarily unavailable")
    return {"data": {"account": [{"accountId": f"{bank}-{client_id}-1", "nickname": "Main"}]}}


@app.get("/{bank}/accounts/{account_id}/transactions")
def transactions(bank: str, account_id: str, from_booking_date_time: str = "", to_booking_date_time: str = "", limit: int = 100):
    _bank(bank)
    items = (
        _monthly(12, 3, "790.00", "Ростелеком", "Интернет и ТВ", "rt")
        + _monthly(5, 3, "2500.00", "МосЭнергоСбыт", "Оплата электроэнергии", "mes")
    )
    return {"data": {"transaction": items[:limit]}}
