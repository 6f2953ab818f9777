"""
Documents Module

Fixed schema of document slots a loan application may carry, the rules for
which slots are mandatory, and the document store contract. The bytes of an
upload live wherever the upload layer put them; the back office only keeps
the metadata row and its id.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from .storage import StorageInterface, StorageRecord
from .exceptions import NotFoundError


class DocumentSlot(Enum):
    """Named places a document can occupy on an application"""
    EMPLOYMENT_PROOF = "employment_proof"
    SPONSOR1_DOC = "sponsor1_doc"
    SPONSOR2_DOC = "sponsor2_doc"
    TERMS_DOC = "terms_doc"
    LOCAL_GOVT_LETTER = "local_govt_letter"
    TITLE_DEED = "title_deed"
    VEHICLE_REG_CARD = "vehicle_reg_card"
    CSEE_CERTIFICATE = "csee_certificate"
    ACSE_CERTIFICATE = "acse_certificate"
    HIGHER_EDU_CERTIFICATE = "higher_edu_certificate"


ALWAYS_REQUIRED_SLOTS = (
    DocumentSlot.SPONSOR1_DOC,
    DocumentSlot.SPONSOR2_DOC,
    DocumentSlot.TERMS_DOC,
)


def required_slots(employed: bool) -> Tuple[DocumentSlot, ...]:
    """Slots that must be filled; employment proof only for employed applicants"""
    if employed:
        return (DocumentSlot.EMPLOYMENT_PROOF,) + ALWAYS_REQUIRED_SLOTS
    return ALWAYS_REQUIRED_SLOTS


@dataclass(frozen=True)
class DocumentUpload:
    """A file the upload layer has already received"""
    filename: str
    path: str
    content_type: Optional[str] = None


@dataclass
class Document(StorageRecord):
    """Stored document metadata"""
    slot: str
    filename: str
    path: str
    content_type: Optional[str] = None
    related_table: Optional[str] = None
    related_id: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Document':
        data = dict(data)
        data['created_at'] = datetime.fromisoformat(data['created_at'])
        data['updated_at'] = datetime.fromisoformat(data['updated_at'])
        return cls(**data)


def normalize_documents(
    documents: Optional[Mapping[Union[str, DocumentSlot], Optional[DocumentUpload]]],
    employed: bool
) -> Tuple[Dict[DocumentSlot, DocumentUpload], List[str]]:
    """
    Validate an upload map against the slot schema.

    Returns:
        (uploads keyed by slot, problems). Empty entries are ignored;
        unknown slots and missing mandatory slots are reported.
    """
    uploads: Dict[DocumentSlot, DocumentUpload] = {}
    problems: List[str] = []

    for key, upload in (documents or {}).items():
        if upload is None:
            continue
        try:
            slot = key if isinstance(key, DocumentSlot) else DocumentSlot(key)
        except ValueError:
            problems.append(f"unknown document slot: {key}")
            continue
        uploads[slot] = upload

    for slot in required_slots(employed):
        if slot not in uploads:
            problems.append(f"missing document: {slot.value}")

    return uploads, problems


class DocumentStore(ABC):
    """Contract for wherever document metadata is kept"""

    @abstractmethod
    def store_document(self, upload: DocumentUpload, slot: DocumentSlot) -> int:
        """Persist an upload and return its document id"""
        pass

    @abstractmethod
    def attach(self, document_id: int, related_table: str, related_id: int) -> None:
        """Link a stored document to the record that owns it"""
        pass

    @abstractmethod
    def get_document(self, document_id: int) -> Optional[Document]:
        pass

    @abstractmethod
    def delete_document(self, document_id: int) -> bool:
        pass


class StorageDocumentStore(DocumentStore):
    """
    Keeps document rows in the shared storage backend, so they take part in
    the caller's transaction
    """

    def __init__(self, storage: StorageInterface, table_name: str = "documents"):
        self.storage = storage
        self.table_name = table_name

    def store_document(self, upload: DocumentUpload, slot: DocumentSlot) -> int:
        now = datetime.now(timezone.utc)
        document = Document(
            id=self.storage.next_id(self.table_name),
            created_at=now,
            updated_at=now,
            slot=slot.value,
            filename=upload.filename,
            path=upload.path,
            content_type=upload.content_type
        )
        self.storage.save(self.table_name, document.id, document.to_dict())
        return document.id

    def attach(self, document_id: int, related_table: str, related_id: int) -> None:
        data = self.storage.load(self.table_name, document_id)
        if data is None:
            raise NotFoundError("Document", document_id)
        data['related_table'] = related_table
        data['related_id'] = related_id
        data['updated_at'] = datetime.now(timezone.utc).isoformat()
        self.storage.save(self.table_name, document_id, data)

    def get_document(self, document_id: int) -> Optional[Document]:
        data = self.storage.load(self.table_name, document_id)
        if data:
            return Document.from_dict(data)
        return None

    def delete_document(self, document_id: int) -> bool:
        return self.storage.delete(self.table_name, document_id)

    def documents_for(self, related_table: str, related_id: int) -> List[Document]:
        rows = self.storage.find(self.table_name, {'related_table': related_table, 'related_id': related_id})
        return [Document.from_dict(row) for row in rows]
