from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from storyloom.db.session import get_db
from storyloom.modules.access.deps import get_current_user, require_admin
from storyloom.modules.credits import ledger
from storyloom.modules.credits.pricing import length_for_words, quote
from storyloom.modules.credits.schemas import (
    BalanceResponse,
    GrantRequest,
    GrantResponse,
    QuoteRequest,
    QuoteResponse,
    TransactionItem,
    TransactionPage,
)

router = APIRouter(tags=["credits"])


@router.post("/credits/quote", response_model=QuoteResponse)
def quote_story(payload: QuoteRequest) -> QuoteResponse:
    story_type = payload.story_type or length_for_words(int(payload.words_per_chapter))
    cost = quote(story_type, include_images=payload.include_images, include_audio=payload.include_audio)
    return QuoteResponse(
        story_type=story_type,
        chapters=cost.chapters,
        story_cost=cost.story_cost,
        audio_cost=cost.audio_cost,
        total_cost=cost.total_cost,
    )


@router.get("/credits/balance", response_model=BalanceResponse)
def read_balance(user: dict = Depends(get_current_user), db: Session = Depends(get_db)) -> BalanceResponse:
    ledger.open_account(db, user["id"])
    summary = ledger.get_account_summary(db, user["id"])
    return BalanceResponse(
        balance=summary.balance,
        lifetime_earned=summary.lifetime_earned,
        lifetime_spent=summary.lifetime_spent,
    )


@router.get("/credits/transactions", response_model=TransactionPage)
def read_transactions(
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    user: dict = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> TransactionPage:
    entries, total = ledger.list_transactions(db, user["id"], limit=limit, offset=offset)
    return TransactionPage(
        transactions=[
            TransactionItem(
                id=entry.id,
                amount=entry.amount,
                reason=entry.reason,
                reference_id=entry.reference_id,
                created_at=entry.created_at,
            )
            for entry in entries
        ],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.post("/admin/credits/grant", response_model=GrantResponse)
def grant_credits(
    payload: GrantRequest,
    _: dict = Depends(require_admin),
    db: Session = Depends(get_db),
) -> GrantResponse:
    ledger.credit(db, payload.user_id, payload.amount, "admin_grant", reference_id=payload.reference_id)
    return GrantResponse(user_id=payload.user_id, balance=ledger.get_balance(db, payload.user_id))
