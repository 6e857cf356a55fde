from typing import Optional, Protocol

from gems_api.models.dto import Principal
from gems_api.services.document_store import DocumentStore

USERS_COLLECTION = "users"


class PrincipalRepository(Protocol):
    async def get(self, uid: str) -> Optional[Principal]: ...


class DocumentPrincipalRepository:
    """
    Reads principals from the `users` collection.

    A missing user is None, not an exception. A user document that does not
    match the schema raises MalformedInput.
    """

    def __init__(self, store: DocumentStore):
        self.store = store

    async def get(self, uid: str) -> Optional[Principal]:
        data = await self.store.get(USERS_COLLECTION, uid)
        if data is None:
            return None
        return Principal.from_document({**data, "uid": uid})
