"""
FileDocumentGenerator — serves E2B(R3) XML produced by the export step.

The XML itself is written elsewhere; this generator only picks up
`{ESG_DOCUMENT_DIR}/{case_id}_E2B_R3.xml`.
"""

from __future__ import annotations

import asyncio
from pathlib import Path

from esg_pipeline.core.config import settings
from esg_pipeline.submission.contracts import GeneratedDocument


def document_filename(case_id: str) -> str:
    return f"{case_id}_E2B_R3.xml"


class FileDocumentGenerator:
    def __init__(self, document_dir: str | Path = settings.ESG_DOCUMENT_DIR) -> None:
        self._document_dir = Path(document_dir)

    async def generate(self, case_id: str) -> GeneratedDocument:
        filename = document_filename(case_id)
        path = self._document_dir / filename
        if not path.is_file():
            return GeneratedDocument(
                success=False,
                errors=[f"No exported E2B(R3) document found for case {case_id}"],
            )

        content = await asyncio.to_thread(path.read_bytes)
        if not content.strip():
            return GeneratedDocument(success=False, errors=[f"{filename} is empty"])
        return GeneratedDocument(success=True, content=content, filename=filename)
