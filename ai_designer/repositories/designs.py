from __future__ import annotations

from typing import Optional

from sqlalchemy import delete
from sqlalchemy.orm import Session

from ai_designer.models import StoreDesignState


class DesignStateRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, *, store_id: str) -> Optional[StoreDesignState]:
        return self.session.get(StoreDesignState, store_id)

    def save(self, state: StoreDesignState) -> StoreDesignState:
        self.session.add(state)
        self.session.commit()
        self.session.refresh(state)
        return state

    def delete(self, *, store_id: str) -> bool:
        result = self.session.execute(
            delete(StoreDesignState)
            .where(StoreDesignState.store_id == store_id)
            .execution_options(synchronize_session=False)
        )
        self.session.commit()
        return (result.rowcount or 0) > 0
