from __future__ import annotations

import threading
from pathlib import Path
from typing import Protocol

from app.errors import NotFoundError, ValidationError


ORDER_DOCUMENTS_BUCKET = 'order-documents'
_REF_PREFIX = f'storage://{ORDER_DOCUMENTS_BUCKET}/'


class DocumentStorage(Protocol):
    def put(self, path: str, content: bytes, *, content_type: str) -> str: ...

    def get(self, file_ref: str) -> bytes: ...

    def delete(self, file_ref: str) -> bool: ...


def file_ref_for(path: str) -> str:
    return f'{_REF_PREFIX}{path}'


def path_from_ref(file_ref: str) -> str:
    if not file_ref.startswith(_REF_PREFIX):
        raise ValidationError(f'Unsupported document reference: {file_ref}')
    path = file_ref[len(_REF_PREFIX) :]
    if not path or path.startswith('/') or '..' in Path(path).parts:
        raise ValidationError(f'Unsupported document reference: {file_ref}')
    return path


class InMemoryDocumentStorage:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._objects: dict[str, tuple[bytes, str]] = {}

    def put(self, path: str, content: bytes, *, content_type: str) -> str:
        file_ref = file_ref_for(path)
        path_from_ref(file_ref)
        with self._lock:
            self._objects[path] = (bytes(content), content_type)
        return file_ref

    def get(self, file_ref: str) -> bytes:
        path = path_from_ref(file_ref)
        with self._lock:
            stored = self._objects.get(path)
        if stored is None:
            raise NotFoundError('Document', file_ref)
        return stored[0]

    def delete(self, file_ref: str) -> bool:
        path = path_from_ref(file_ref)
        with self._lock:
            return self._objects.pop(path, None) is not None


class LocalDocumentStorage:
    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)

    def _target(self, path: str) -> Path:
        return self.root / ORDER_DOCUMENTS_BUCKET / path

    def put(self, path: str, content: bytes, *, content_type: str) -> str:
        file_ref = file_ref_for(path)
        target = self._target(path_from_ref(file_ref))
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(content)
        return file_ref

    def get(self, file_ref: str) -> bytes:
        target = self._target(path_from_ref(file_ref))
        if not target.is_file():
            raise NotFoundError('Document', file_ref)
        return target.read_bytes()

    def delete(self, file_ref: str) -> bool:
        target = self._target(path_from_ref(file_ref))
        if not target.is_file():
            return False
        target.unlink()
        return True
