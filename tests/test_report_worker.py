"""
Report Worker 테스트

리포트/익스포트 핸들러 결과 형식과 진행률, 알 수 없는 작업 타입 처리 테스트
"""

import json
from unittest.mock import AsyncMock

import pytest

from conftest import FakeBroker, make_job
from queue_worker.services.report_generator import LocalDocumentGenerator
from queue_worker.workers.report_worker import ReportJobHandlers, delivery_rate
from queue_worker.workers.worker_pool import WorkerPool

USAGE = {
    'messages': {'sent': 1000, 'limit': 5000},
    'campaigns': {'created': 5, 'limit': 20},
    'contacts': {'total': 500, 'limit': 2000},
}

def make_handlers():
    data_source = AsyncMock()
    generator = AsyncMock()
    return ReportJobHandlers(data_source, generator), data_source, generator

async def test_delivery_rate():
    assert delivery_rate(950, 1000) == "95.00"
    assert delivery_rate(1, 3) == "33.33"
    assert delivery_rate(0, 0) == 0

async def test_campaign_report():
    """캠페인 리포트: 진행률 10/40/90, stats 포함"""
    print("🔥 캠페인 리포트 테스트!")

    handlers, data_source, generator = make_handlers()
    data_source.fetch_campaign_data.return_value = {
        'id': 'camp-1', 'name': 'Promo', 'totalMessages': 1000, 'delivered': 950, 'failed': 50,
    }
    generator.generate_report.return_value = '/reports/rep-1.csv'
    job, recorder = make_job('campaign_report', {
        'reportId': 'rep-1', 'userId': 'u', 'tenantId': 't', 'campaignId': 'camp-1', 'format': 'csv',
    }, queue_name='report')

    result = await handlers.campaign_report(job)

    data_source.fetch_campaign_data.assert_awaited_once_with('camp-1', 't')
    assert recorder.values == [10, 40, 90]
    assert result['reportId'] == 'rep-1'
    assert result['campaignId'] == 'camp-1'
    assert result['path'] == '/reports/rep-1.csv'
    assert result['generatedAt']
    assert result['stats'] == {'totalMessages': 1000, 'delivered': 950, 'failed': 50, 'deliveryRate': '95.00'}
    print(f"  ✅ {result['stats']}")

async def test_analytics_report():
    handlers, data_source, generator = make_handlers()
    data_source.fetch_analytics_data.return_value = {'summary': {'totalMessages': 10}}
    generator.generate_report.return_value = '/reports/rep-2.json'
    job, recorder = make_job('analytics_report', {
        'reportId': 'rep-2', 'tenantId': 't', 'dateFrom': '2024-01-01', 'dateTo': '2024-01-31', 'format': 'json',
    }, queue_name='report')

    result = await handlers.analytics_report(job)

    assert recorder.values == [10, 50, 90]
    assert result['period'] == {'from': '2024-01-01', 'to': '2024-01-31'}
    assert result['summary'] == {'totalMessages': 10}
    assert result['format'] == 'json'

async def test_exports_write_files(tmp_path):
    """익스포트: 실제 파일 생성 및 totalRecords"""
    print("\n🔥 익스포트 파일 생성 테스트!")

    data_source = AsyncMock()
    data_source.fetch_contacts.return_value = [
        {'id': '1', 'name': 'Contact 1', 'phone': '5511999999999', 'tags': ['vip']},
        {'id': '2', 'name': 'Contact 2', 'phone': '5511888888888', 'tags': []},
    ]
    data_source.fetch_messages.return_value = [{'id': '1', 'phone': '5511999999999', 'text': 'Oi'}]
    generator = LocalDocumentGenerator(str(tmp_path / 'reports'), str(tmp_path / 'exports'))
    handlers = ReportJobHandlers(data_source, generator)

    contacts_job, recorder = make_job('export_contacts', {
        'exportId': 'exp-1', 'userId': 'u', 'tenantId': 't', 'filters': {'tag': 'vip'}, 'format': 'csv',
    }, queue_name='report')
    result = await handlers.export_contacts(contacts_job)

    data_source.fetch_contacts.assert_awaited_once_with('t', 'u', {'tag': 'vip'})
    assert recorder.values == [10, 40, 90]
    assert result['totalRecords'] == 2
    assert result['path'].endswith('contacts-exp-1.csv')
    lines = (tmp_path / 'exports' / 'contacts-exp-1.csv').read_text(encoding='utf-8').splitlines()
    assert lines[0] == 'id,name,phone,tags'
    assert len(lines) == 3

    messages_job, _ = make_job('export_messages', {
        'exportId': 'exp-2', 'userId': 'u', 'tenantId': 't', 'format': 'json',
    }, queue_name='report')
    result = await handlers.export_messages(messages_job)

    data_source.fetch_messages.assert_awaited_once_with('t', 'u', {})
    exported = json.loads((tmp_path / 'exports' / 'messages-exp-2.json').read_text(encoding='utf-8'))
    assert exported == [{'id': '1', 'phone': '5511999999999', 'text': 'Oi'}]
    assert result['totalRecords'] == 1
    print(f"  ✅ {result['path']}")

async def test_unsupported_export_format(tmp_path):
    generator = LocalDocumentGenerator(str(tmp_path / 'reports'), str(tmp_path / 'exports'))
    with pytest.raises(ValueError):
        await generator.generate_export([], 'pdf', 'exp-3', 'contacts')

async def test_usage_report():
    handlers, data_source, _ = make_handlers()
    data_source.fetch_usage_data.return_value = USAGE
    job, recorder = make_job('usage_report', {'reportId': 'rep-3', 'tenantId': 't', 'period': '2024-01'},
                             queue_name='report')

    result = await handlers.usage_report(job)

    assert recorder.values == [20, 60]
    assert result['reportId'] == 'rep-3'
    assert result['period'] == '2024-01'
    assert result['usage'] == USAGE

async def test_unknown_type_fails_only_that_job(wait_until):
    """알 수 없는 타입의 작업만 실패하고 다음 usage_report는 정상 완료"""
    print("\n🔥 알 수 없는 작업 타입 테스트!")

    handlers, data_source, _ = make_handlers()
    data_source.fetch_usage_data.return_value = USAGE
    broker = FakeBroker('report')
    pool = WorkerPool(broker, handlers.router(), concurrency=1)

    bad = broker.add('unsupported_type', max_attempts=3)
    good = broker.add('usage_report', {'reportId': 'rep-4', 'tenantId': 't', 'period': '2024-02'})
    pool.start()

    await wait_until(lambda: good.id in broker.completed)
    await pool.close()

    assert 'unsupported_type' in broker.failed[bad.id]
    assert bad.attempts_made == 1, "알 수 없는 타입은 재시도하지 않음"
    assert broker.completed[good.id]['usage'] == USAGE
    print(f"  ✅ 실패 메시지: {broker.failed[bad.id]}")
