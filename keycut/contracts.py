from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel


class ExportResult(BaseModel):
    image_id: str
    source_path: str
    output_path: Optional[str] = None
    status: Literal["ok", "failed"]
    failure_kind: Optional[Literal["auth", "generic", "input"]] = None
    message: str = ""
    # Service explanation, kept verbatim for the UI layer.
    detail: str = ""
    key_type: Optional[Literal["magenta", "reference"]] = None
    background: str = "transparent"
    width: int = 0
    height: int = 0
