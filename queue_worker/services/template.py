import re
from datetime import datetime
from typing import Any, Dict, Optional

PLACEHOLDER = re.compile(r'\{\{\s*([\w.]+)\s*\}\}')

def dynamic_variables(now: Optional[datetime] = None) -> Dict[str, str]:
    """발송 시점에 계산되는 변수 (data, saudacao)"""
    now = now or datetime.now()
    if 6 <= now.hour < 12:
        greeting = 'Bom dia'
    elif 12 <= now.hour < 18:
        greeting = 'Boa tarde'
    else:
        greeting = 'Boa noite'
    return {
        'data': now.strftime('%d/%m/%Y'),
        'saudacao': greeting,
    }

def render_message(template: str, variables: Dict[str, Any], now: Optional[datetime] = None) -> str:
    """{{변수}} 치환. 연락처 변수보다 동적 변수가 우선. 없는 변수는 빈 문자열"""
    values = {**(variables or {}), **dynamic_variables(now)}

    def _replace(match: 're.Match[str]') -> str:
        value = values.get(match.group(1))
        return '' if value is None else str(value)

    return PLACEHOLDER.sub(_replace, template or '')
