"""
연락처 검증 단계

원본 행을 유효/무효로 분류하고 유효한 항목은 저장 가능한 형태로 정규화한다.
이 단계는 작업을 실패시키지 않는다.
"""

import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from queue_worker.services.batch_processor import MAX_ERRORS

EMAIL_PATTERN = re.compile(r'^[^\s@]+@[^\s@]+\.[^\s@]+$')
PHONE_MIN_DIGITS = 10
PHONE_MAX_DIGITS = 13

# fieldMapping에서 표준 필드로 취급하는 키
STANDARD_FIELDS = ('name', 'phone', 'email', 'tags')

@dataclass
class ValidationResult:
    valid: List[Dict[str, Any]] = field(default_factory=list)
    invalid: List[Dict[str, Any]] = field(default_factory=list)
    errors: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'valid': self.valid,
            'invalid': self.invalid,
            'errors': self.errors,
        }

def normalize_phone(raw: Any) -> str:
    """숫자만 남긴 전화번호"""
    if raw is None:
        return ''
    return re.sub(r'\D', '', str(raw))

def _split_tags(raw: Any) -> List[str]:
    if raw is None:
        return []
    if isinstance(raw, (list, tuple)):
        return [str(tag).strip() for tag in raw if str(tag).strip()]
    return [tag.strip() for tag in str(raw).split(',') if tag.strip()]

def apply_field_mapping(row: Dict[str, Any], field_mapping: Optional[Dict[str, str]]) -> Dict[str, Any]:
    """fieldMapping(대상 필드 -> 원본 컬럼)을 적용

    매핑이 없으면 원본 키를 그대로 사용한다. 표준 필드가 아닌 매핑 대상은 metadata로 모은다.
    """
    if not field_mapping:
        return dict(row)

    mapped: Dict[str, Any] = {}
    metadata: Dict[str, Any] = {}
    for target, source in field_mapping.items():
        if not source or source not in row:
            continue
        if target in STANDARD_FIELDS:
            mapped[target] = row[source]
        else:
            metadata[target] = row[source]

    if metadata:
        mapped['metadata'] = metadata
    return mapped

def validate_contact(contact: Dict[str, Any]) -> List[str]:
    """연락처 하나의 검증 오류 메시지 목록 (비어 있으면 유효)"""
    errors = []

    digits = normalize_phone(contact.get('phone'))
    if not digits:
        errors.append("Phone is required")
    elif not PHONE_MIN_DIGITS <= len(digits) <= PHONE_MAX_DIGITS:
        errors.append(
            f"Invalid phone number: must have {PHONE_MIN_DIGITS}-{PHONE_MAX_DIGITS} digits, got {len(digits)}"
        )

    email = contact.get('email')
    if email is not None and str(email).strip():
        if not EMAIL_PATTERN.match(str(email).strip()):
            errors.append(f"Invalid email: {email}")

    return errors

def normalize_contact(contact: Dict[str, Any]) -> Dict[str, Any]:
    email = contact.get('email')
    email = str(email).strip().lower() if email is not None and str(email).strip() else None
    metadata = contact.get('metadata')
    return {
        'name': str(contact.get('name') or '').strip(),
        'phone': normalize_phone(contact.get('phone')),
        'email': email,
        'tags': _split_tags(contact.get('tags')),
        'metadata': dict(metadata) if isinstance(metadata, dict) else {},
    }

def validate_contacts(
    rows: List[Dict[str, Any]],
    field_mapping: Optional[Dict[str, str]] = None,
    max_errors: int = MAX_ERRORS
) -> ValidationResult:
    """원본 행들을 매핑 후 유효/무효로 분류

    errors는 앞에서부터 max_errors개까지만 유지한다. invalid 목록은 전부 유지한다.
    """
    result = ValidationResult()

    for index, row in enumerate(rows):
        contact = apply_field_mapping(row, field_mapping)
        messages = validate_contact(contact)

        if messages:
            result.invalid.append({'row': index + 1, 'data': row, 'errors': messages})
            if len(result.errors) < max_errors:
                result.errors.append({
                    'row': index + 1,
                    'phone': contact.get('phone'),
                    'error': '; '.join(messages),
                })
            continue

        result.valid.append(normalize_contact(contact))

    return result
