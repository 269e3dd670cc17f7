"""
Tests for recent-conversation summaries
"""
from datetime import datetime, timedelta

from coachchat.services import message_store
from coachchat.services.presence import presence_registry


class TestRecentConversations:
    """Test suite for the conversation index"""

    def test_empty_for_new_user(self, trainer):
        assert message_store.recent_conversations(trainer.id) == []

    def test_one_entry_per_partner_newest_first(self, trainer, client_user, second_client):
        message_store.append_message(trainer.id, client_user.id, body='Morning Alex')
        message_store.append_message(trainer.id, second_client.id, body='Morning Blair')
        latest = message_store.append_message(client_user.id, trainer.id, body='Done with cardio')

        conversations = message_store.recent_conversations(trainer.id)

        assert [c.partner_id for c in conversations] == [client_user.id, second_client.id]
        assert conversations[0].last_message.id == latest.id
        assert conversations[0].is_last_message_from_self is False
        assert conversations[1].is_last_message_from_self is True

    def test_unread_counts_per_partner(self, trainer, client_user, second_client):
        message_store.append_message(client_user.id, trainer.id, body='1')
        message_store.append_message(client_user.id, trainer.id, body='2')
        message_store.append_message(second_client.id, trainer.id, body='3')
        message_store.mark_read(second_client.id, trainer.id)

        by_partner = {c.partner_id: c.unread_count for c in message_store.recent_conversations(trainer.id)}

        assert by_partner == {client_user.id: 2, second_client.id: 0}

    def test_own_messages_never_unread(self, trainer, client_user):
        message_store.append_message(trainer.id, client_user.id, body='check in?')

        conversation = message_store.recent_conversations(trainer.id)[0]
        assert conversation.unread_count == 0

    def test_limit(self, trainer, client_user, second_client):
        message_store.append_message(trainer.id, client_user.id, body='a')
        message_store.append_message(trainer.id, second_client.id, body='b')

        conversations = message_store.recent_conversations(trainer.id, limit=1)

        assert [c.partner_id for c in conversations] == [second_client.id]

    def test_tie_on_timestamp_uses_latest_id(self, monkeypatch, trainer, client_user):
        frozen = datetime(2026, 3, 1, 9, 0, 0)
        monkeypatch.setattr(message_store, 'utcnow', lambda: frozen)

        message_store.append_message(trainer.id, client_user.id, body='first')
        second = message_store.append_message(client_user.id, trainer.id, body='second')

        conversation = message_store.recent_conversations(client_user.id)[0]
        assert conversation.last_message.id == second.id

    def test_ordering_follows_created_at(self, monkeypatch, trainer, client_user, second_client):
        base = datetime(2026, 3, 1, 9, 0, 0)
        times = iter([base + timedelta(minutes=5), base])
        monkeypatch.setattr(message_store, 'utcnow', lambda: next(times))

        message_store.append_message(trainer.id, client_user.id, body='later')
        message_store.append_message(trainer.id, second_client.id, body='earlier')

        conversations = message_store.recent_conversations(trainer.id)
        assert [c.partner_id for c in conversations] == [client_user.id, second_client.id]

    def test_to_dict_payload(self, trainer, client_user):
        message = message_store.append_message(client_user.id, trainer.id, body='How many sets?')
        presence_registry.register(client_user.id, 'sid-alex')

        data = message_store.recent_conversations(trainer.id)[0].to_dict()

        assert data['partnerId'] == client_user.id
        assert data['partnerName'] == 'Alex Client'
        assert data['partnerRole'] == 'client'
        assert data['partnerIsOnline'] is True
        assert data['lastMessageId'] == message.id
        assert data['lastMessage'] == 'How many sets?'
        assert data['lastMessageType'] == 'text'
        assert data['lastMessageTime'].endswith('Z')
        assert data['unreadCount'] == 1
        assert data['isLastMessageFromMe'] is False
