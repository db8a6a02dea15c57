"""
Campaign Worker 테스트

연락처별 발송 재시도/영구 실패 집계, 세션 오류 시 캠페인 중단, 단건 발송 테스트
"""

from unittest.mock import AsyncMock

import pytest
from pydantic import ValidationError

from conftest import make_job
from queue_worker.exceptions import CampaignHaltError
from queue_worker.services.batch_processor import BatchConfig
from queue_worker.services.message_sender import SendError
from queue_worker.workers.campaign_worker import CampaignJobHandlers

def make_contacts(count: int) -> list:
    return [
        {'id': f'c{i}', 'phone': f'5511{i:09d}', 'name': f'Cliente {i}', 'variables': {'cupom': f'CUP{i}'}}
        for i in range(count)
    ]

def make_handlers(contacts, send_side_effect=None):
    store = AsyncMock()
    store.load_pending_contacts.return_value = contacts
    sender = AsyncMock()
    sender.send_text.side_effect = send_side_effect
    sender.send_text.return_value = {'id': 'msg-1', 'raw': {}}
    sleep = AsyncMock()
    handlers = CampaignJobHandlers(
        store,
        sender,
        BatchConfig(batch_size=2, max_errors=10),
        max_retries=3,
        retry_base_delay=0,
        retry_max_delay=0,
        sleep=sleep
    )
    return handlers, store, sender, sleep

PAYLOAD = {
    'campaignId': 'camp-1',
    'tenantId': 't',
    'userId': 'u',
    'token': 'instance-token',
    'message': 'Olá {{nome}}, use {{cupom}}',
}

async def test_dispatch_campaign_all_sent():
    """모든 연락처 발송 성공"""
    print("🔥 캠페인 발송 성공 테스트!")

    contacts = make_contacts(5)
    handlers, store, sender, _ = make_handlers(contacts)
    job, recorder = make_job('dispatch_campaign', dict(PAYLOAD), queue_name='campaign')

    result = await handlers.dispatch_campaign(job)

    assert result['campaignId'] == 'camp-1'
    assert result['total'] == 5
    assert result['sent'] == 5
    assert result['failed'] == 0
    assert result['errors'] == []
    assert result['completedAt']
    sender.send_text.assert_any_await('5511000000000', 'Olá Cliente 0, use CUP0', 'instance-token')
    store.update_contact_status.assert_any_await('c4', 'sent')
    assert store.update_campaign_status.await_args_list[-1].args[:2] == ('camp-1', 'completed')
    assert recorder.values[0] == 10
    assert recorder.values[-1] == 95
    assert recorder.values == sorted(recorder.values)
    print(f"  ✅ 진행률: {recorder.values}")

async def test_permanent_errors_counted_and_transient_retried():
    """잘못된 번호는 재시도 없이 실패, 서버 오류는 재시도 후 성공"""
    print("\n🔥 발송 오류 분류 테스트!")

    contacts = make_contacts(3)
    attempts = {}

    async def send(phone, body, token):
        attempts[phone] = attempts.get(phone, 0) + 1
        if phone == contacts[0]['phone']:
            raise SendError("WUZAPI send failed (400): not on whatsapp", status_code=400)
        if phone == contacts[1]['phone'] and attempts[phone] == 1:
            raise SendError("WUZAPI send failed (503): busy", status_code=503)
        return {'id': f'msg-{phone}', 'raw': {}}

    handlers, store, _, sleep = make_handlers(contacts, send)
    job, _ = make_job('dispatch_campaign', dict(PAYLOAD), queue_name='campaign')

    result = await handlers.dispatch_campaign(job)

    assert result['sent'] == 2
    assert result['failed'] == 1
    assert result['errors'] == [{
        'phone': contacts[0]['phone'],
        'errorType': 'INVALID_NUMBER',
        'error': 'WUZAPI send failed (400): not on whatsapp',
    }]
    assert attempts[contacts[0]['phone']] == 1
    assert attempts[contacts[1]['phone']] == 2
    assert sleep.await_count == 1
    store.update_contact_status.assert_any_await(
        'c0', 'failed', 'INVALID_NUMBER', 'WUZAPI send failed (400): not on whatsapp'
    )
    print(f"  ✅ 결과: 성공 {result['sent']}, 실패 {result['failed']}")

async def test_transient_error_gives_up_after_max_retries():
    async def send(phone, body, token):
        raise SendError("WUZAPI send failed (500): server error", status_code=500)

    handlers, _, sender, sleep = make_handlers(make_contacts(1), send)
    job, _ = make_job('dispatch_campaign', dict(PAYLOAD), queue_name='campaign')

    result = await handlers.dispatch_campaign(job)

    assert sender.send_text.await_count == 3
    assert sleep.await_count == 2
    assert result['failed'] == 1
    assert result['errors'][0]['errorType'] == 'SERVER_BUSY'

async def test_status_write_failure_does_not_resend():
    """발송 성공 후 상태 기록이 실패해도 재발송하지 않고 성공으로 집계"""
    print("\n🔥 상태 기록 실패 재발송 방지 테스트!")

    handlers, store, sender, sleep = make_handlers(make_contacts(1))

    async def update_contact_status(contact_id, status, *args):
        if status == 'sent':
            raise ConnectionError("connection to postgres lost")

    store.update_contact_status.side_effect = update_contact_status
    job, _ = make_job('dispatch_campaign', dict(PAYLOAD), queue_name='campaign')

    result = await handlers.dispatch_campaign(job)

    assert sender.send_text.await_count == 1, "메시지는 한 번만 발송"
    sleep.assert_not_awaited()
    assert result['sent'] == 1
    assert result['failed'] == 0
    assert result['errors'] == []
    print(f"  ✅ 발송 {sender.send_text.await_count}회, 결과: {result['sent']}건 성공")

async def test_session_error_pauses_campaign_and_fails_job():
    """세션 오류면 캠페인을 paused로 바꾸고 작업 실패"""
    print("\n🔥 세션 오류 캠페인 중단 테스트!")

    contacts = make_contacts(4)

    async def send(phone, body, token):
        if phone == contacts[2]['phone']:
            raise SendError("WUZAPI send failed (401): unauthorized", status_code=401)
        return {'id': 'ok', 'raw': {}}

    handlers, store, sender, _ = make_handlers(contacts, send)
    job, _ = make_job('dispatch_campaign', dict(PAYLOAD), queue_name='campaign')

    with pytest.raises(CampaignHaltError) as exc_info:
        await handlers.dispatch_campaign(job)

    assert 'UNAUTHORIZED' in str(exc_info.value)
    statuses = [call.args[1] for call in store.update_campaign_status.await_args_list]
    assert statuses == ['running', 'paused']
    assert sender.send_text.await_count == 3, "중단 이후 연락처는 발송하지 않음"
    print(f"  ✅ {exc_info.value}")

async def test_send_message():
    handlers, _, sender, _ = make_handlers([])
    job, recorder = make_job('send_message', {
        'phone': '5511987654321',
        'message': 'Oi {{nome}}',
        'variables': {'nome': 'Ana'},
        'token': 'instance-token',
    }, queue_name='campaign')

    result = await handlers.send_message(job)

    sender.send_text.assert_awaited_once_with('5511987654321', 'Oi Ana', 'instance-token')
    assert result == {'phone': '5511987654321', 'messageId': 'msg-1', 'status': 'sent'}
    assert recorder.values == [10, 100]

async def test_send_message_failure_propagates():
    async def send(phone, body, token):
        raise SendError("WUZAPI send failed (429): too many", status_code=429)

    handlers, _, _, _ = make_handlers([], send)
    job, _ = make_job('send_message', {'phone': '5511987654321', 'message': 'Oi'}, queue_name='campaign')

    with pytest.raises(SendError):
        await handlers.send_message(job)

async def test_invalid_payload_fails_job():
    """필수 필드가 없는 payload는 작업 실패"""
    handlers, store, sender, _ = make_handlers(make_contacts(1))

    job, _ = make_job('dispatch_campaign', {'campaignId': 'camp-1'}, queue_name='campaign')
    with pytest.raises(ValidationError):
        await handlers.dispatch_campaign(job)
    store.load_pending_contacts.assert_not_awaited()

    job, _ = make_job('send_message', {'phone': '  ', 'message': 'Oi'}, queue_name='campaign')
    with pytest.raises(ValidationError):
        await handlers.send_message(job)
    sender.send_text.assert_not_awaited()
