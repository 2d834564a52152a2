"""Content codecs between the client form and the server storage form of a note."""

import base64
import binascii
from abc import ABC, abstractmethod
from dataclasses import replace

from .models import Note


class NoteCodec(ABC):
    """Encodes notes for storage and decodes them back to client form."""

    name: str = "abstract"

    @abstractmethod
    def encode(self, note: Note) -> Note:
        """Convert a client-form note to storage form."""

    @abstractmethod
    def decode(self, note: Note) -> Note:
        """Convert a storage-form note to client form.

        Raises:
            ValueError: If the stored content cannot be decoded.
        """


class Base64NoteCodec(NoteCodec):
    """Stores title and content as base64 of their UTF-8 bytes."""

    name = "base64"

    @staticmethod
    def _encode_text(text: str | None) -> str | None:
        if text is None:
            return None
        return base64.b64encode(text.encode("utf-8")).decode("ascii")

    @staticmethod
    def _decode_text(text: str | None) -> str | None:
        if text is None:
            return None
        try:
            return base64.b64decode(text.encode("ascii"), validate=True).decode("utf-8")
        except (binascii.Error, UnicodeError) as e:
            raise ValueError(f"Invalid base64 note data: {e}") from e

    def encode(self, note: Note) -> Note:
        return replace(
            note,
            title=self._encode_text(note.title),
            content=self._encode_text(note.content),
        )

    def decode(self, note: Note) -> Note:
        return replace(
            note,
            title=self._decode_text(note.title),
            content=self._decode_text(note.content),
        )


class PlainNoteCodec(NoteCodec):
    """Stores notes as-is."""

    name = "plain"

    def encode(self, note: Note) -> Note:
        return replace(note)

    def decode(self, note: Note) -> Note:
        return replace(note)


_CODECS: dict[str, type[NoteCodec]] = {
    Base64NoteCodec.name: Base64NoteCodec,
    PlainNoteCodec.name: PlainNoteCodec,
}


def get_codec(name: str) -> NoteCodec:
    """Look up a codec by its configured name.

    Raises:
        ValueError: If no codec is registered under that name.
    """
    try:
        return _CODECS[name]()
    except KeyError:
        raise ValueError(
            f"Unknown note encoding '{name}', expected one of: {', '.join(_CODECS)}"
        ) from None
