# queue_worker/services/file_parser.py
import asyncio
import csv
import json
import logging
from pathlib import Path
from typing import Any, Dict, List

from queue_worker.exceptions import ImportSourceError

logger = logging.getLogger(__name__)

SUPPORTED_TYPES = ('csv', 'json')

class LocalFileParser:
    """업로드된 연락처 파일(CSV/JSON)을 행 목록으로 읽는 파서"""

    def __init__(self, encoding: str = 'utf-8-sig'):
        self.encoding = encoding

    async def parse(self, file_path: str, file_type: str) -> List[Dict[str, Any]]:
        if not file_path:
            raise ImportSourceError("Import file path is required")
        file_type = (file_type or Path(file_path).suffix.lstrip('.')).lower()
        if file_type not in SUPPORTED_TYPES:
            raise ImportSourceError(f"Unsupported file type: {file_type}")

        path = Path(file_path)
        if not path.is_file():
            raise ImportSourceError(f"Import file not found: {file_path}")

        try:
            rows = await asyncio.to_thread(self._read, path, file_type)
        except (OSError, UnicodeDecodeError, csv.Error, json.JSONDecodeError) as e:
            raise ImportSourceError(f"Cannot read import file {file_path}: {e}") from e

        logger.info(f"파일 파싱 완료: {path.name} -> {len(rows)}행")
        return rows

    def _read(self, path: Path, file_type: str) -> List[Dict[str, Any]]:
        with open(path, 'r', encoding=self.encoding, newline='') as f:
            if file_type == 'csv':
                sample = f.read(4096)
                f.seek(0)
                try:
                    dialect = csv.Sniffer().sniff(sample, delimiters=',;\t')
                except csv.Error:
                    dialect = csv.excel
                return [dict(row) for row in csv.DictReader(f, dialect=dialect)]

            data = json.load(f)
            if isinstance(data, dict):
                data = data.get('contacts', [])
            if not isinstance(data, list):
                raise json.JSONDecodeError("expected a list of contacts", str(path), 0)
            return [row for row in data if isinstance(row, dict)]
