import pytest

from hrops.integrations.directory.client import FakeDirectoryClient
from hrops.integrations.documents.client import FakeDocumentStore
from hrops.integrations.sheets.client import FakeRosterSource
from hrops.integrations.sheets.ledger import InMemorySerialLedger
from hrops.notifications.email import FakeMailSender
from hrops.services.approval import ApprovalWorkflow, InMemoryTokenStore
from hrops.services.jobs import Collaborators
from hrops.services.settings_service import InMemorySettingsStore, load_hr_config


# ── Patch settings before any test touches the network ──────────────────────
@pytest.fixture(autouse=True)
def _patch_settings(monkeypatch):
    from hrops.core.config import settings
    monkeypatch.setattr(settings, "admin_api_token", "test-admin-token-0123456789abcdef0123")
    monkeypatch.setattr(settings, "public_base_url", "https://hr.example.com")
    monkeypatch.setattr(settings, "slack_webhook_url", "")
    monkeypatch.setattr(settings, "smtp_host", "")
    monkeypatch.setattr(settings, "document_ready_poll_seconds", 0.0)
    monkeypatch.setattr(settings, "document_ready_timeout_seconds", 1.0)
    monkeypatch.setattr(settings, "approval_token_ttl_seconds", 3600)


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def hr_config():
    store = InMemorySettingsStore({
        "operator_email": "ops@example.com",
        "birthday_reviewer_email": "reviewer@example.com",
        "department_group_mapping": '{"研究部": "research@example.com", "業務部": "sales@example.com"}',
        "hr_manager_cc_email": "hr-lead@example.com",
        "sender_name": "人資室",
        "boss_name": "Kevin",
        "boss_email": "boss@example.com",
        "boss_cc_email": "cc1@example.com, cc2@example.com",
        "insurance_name": "Elsie",
        "insurance_email": "insurer@example.com",
        "insurance_cc_emails": '["hr-lead@example.com"]',
        "payment_notice_recipient": "all@example.com",
    })
    return load_hr_config(store)


@pytest.fixture
def mailer():
    return FakeMailSender()


@pytest.fixture
def documents():
    return FakeDocumentStore()


@pytest.fixture
def directory():
    return FakeDirectoryClient()


@pytest.fixture
def workflow(clock):
    tokens = iter(f"token-{i}" for i in range(1, 100))
    return ApprovalWorkflow(
        InMemoryTokenStore(clock=clock), ttl_seconds=3600, token_factory=lambda: next(tokens), clock=clock,
    )


@pytest.fixture
def collaborators(mailer, documents, directory, workflow):
    roster = FakeRosterSource()
    return Collaborators(
        roster=roster,
        roster_writer=roster,
        ledger=InMemorySerialLedger({"集邦科技_正職_114": 100, "集邦科技_非正職_114": 900}),
        directory=directory,
        documents=documents,
        mailer=mailer,
        workflow=workflow,
    )
