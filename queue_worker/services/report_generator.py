"""
리포트/익스포트 파일 생성

CSV 또는 JSON 파일을 로컬 디렉토리에 쓰고 경로를 반환한다.
"""

import asyncio
import csv
import json
import logging
from pathlib import Path
from typing import Any, Dict, List

logger = logging.getLogger(__name__)

SUPPORTED_FORMATS = ('csv', 'json')

def _flatten(data: Dict[str, Any], prefix: str = '') -> Dict[str, Any]:
    flat = {}
    for key, value in data.items():
        name = f"{prefix}{key}"
        if isinstance(value, dict):
            flat.update(_flatten(value, f"{name}."))
        elif isinstance(value, (list, tuple)):
            flat[name] = json.dumps(value, ensure_ascii=False, default=str)
        else:
            flat[name] = value
    return flat

class LocalDocumentGenerator:
    """리포트/익스포트 문서 생성기"""

    def __init__(self, reports_dir: str, exports_dir: str):
        self.reports_dir = Path(reports_dir)
        self.exports_dir = Path(exports_dir)

    async def generate_report(self, data: Dict[str, Any], format: str, report_id: str) -> str:
        format = self._check_format(format)
        path = self.reports_dir / f"{report_id}.{format}"
        await asyncio.to_thread(self._write, path, [_flatten(data)], format)
        logger.info(f"리포트 생성 완료: {path}")
        return str(path)

    async def generate_export(
        self,
        records: List[Dict[str, Any]],
        format: str,
        export_id: str,
        kind: str
    ) -> str:
        format = self._check_format(format)
        path = self.exports_dir / f"{kind}-{export_id}.{format}"
        rows = [_flatten(record) for record in records]
        await asyncio.to_thread(self._write, path, rows, format)
        logger.info(f"익스포트 생성 완료: {path} ({len(rows)}건)")
        return str(path)

    def _check_format(self, format: str) -> str:
        format = (format or 'csv').lower()
        if format not in SUPPORTED_FORMATS:
            raise ValueError(f"Unsupported format: {format}")
        return format

    def _write(self, path: Path, rows: List[Dict[str, Any]], format: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'w', encoding='utf-8', newline='') as f:
            if format == 'json':
                json.dump(rows, f, ensure_ascii=False, indent=2, default=str)
                return

            fieldnames: List[str] = []
            for row in rows:
                for key in row:
                    if key not in fieldnames:
                        fieldnames.append(key)
            writer = csv.DictWriter(f, fieldnames=fieldnames)
            writer.writeheader()
            writer.writerows(rows)
