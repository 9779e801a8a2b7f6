from __future__ import annotations

from typing import Optional

from sqlalchemy.orm import Session

from ai_designer.models import SETTINGS_ID, TOKEN_SETTINGS_ID, PlatformSettings, Store, TokenSettings


class PlatformRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get_settings(self) -> Optional[PlatformSettings]:
        return self.session.get(PlatformSettings, SETTINGS_ID)

    def get_token_settings(self) -> Optional[TokenSettings]:
        return self.session.get(TokenSettings, TOKEN_SETTINGS_ID)

    def get_store(self, *, store_id: str) -> Optional[Store]:
        return self.session.get(Store, store_id)
