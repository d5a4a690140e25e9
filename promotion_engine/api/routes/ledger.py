from typing import List

from fastapi import APIRouter, Depends, HTTPException

from promotion_engine.api.container import get_ledger
from promotion_engine.api.schemas.run import LedgerEntryResponse
from promotion_engine.core.errors import LedgerError

router = APIRouter(prefix="/ledger", tags=["ledger"])


@router.get("/{application}/{target}", response_model=LedgerEntryResponse)
def get_ledger_entry(application: str, target: str, ledger=Depends(get_ledger)):
    try:
        entry = ledger.get(application, target)
    except LedgerError as e:
        raise HTTPException(status_code=503, detail=str(e))

    if entry is None:
        raise HTTPException(status_code=404, detail="No release recorded for this pair")

    return LedgerEntryResponse.from_domain(entry)


@router.get("/{application}/{target}/history", response_model=List[LedgerEntryResponse])
def get_ledger_history(application: str, target: str, ledger=Depends(get_ledger)):
    try:
        entries = ledger.history(application, target)
    except LedgerError as e:
        raise HTTPException(status_code=503, detail=str(e))

    return [LedgerEntryResponse.from_domain(e) for e in entries]
