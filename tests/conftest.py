"""Shared fixtures."""

import pytest

from mlbridge.config import BotConfig, CommentsConfig, MailConfig, MailingListConfig
from tests.helpers import FakeHost


@pytest.fixture
def bot() -> BotConfig:
    return BotConfig(name="mlbridge", email="bridge@example.org", username="mlbridge")


@pytest.fixture
def comments_config() -> CommentsConfig:
    return CommentsConfig(ignored_users=["ignoreme"], ignored_patterns=["^IGNORE"], ready_labels=["rfr"])


@pytest.fixture
def mail_config() -> MailConfig:
    return MailConfig(lists=[MailingListConfig(address="dev@example.org")])


@pytest.fixture
def host() -> FakeHost:
    return FakeHost()
