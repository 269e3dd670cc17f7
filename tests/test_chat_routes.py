"""
Tests for the REST chat history surface
"""
from coachchat.models.chat_message import ChatMessage
from coachchat.services import message_store
from conftest import events_named


class TestAuthentication:
    """Test suite for bearer-token protection"""

    def test_missing_token(self, client, trainer):
        response = client.get('/api/chat/conversations')

        assert response.status_code == 401
        assert response.get_json()['code'] == 'NOT_AUTHENTICATED'

    def test_garbage_token(self, client, trainer):
        response = client.get('/api/chat/unread', headers={'Authorization': 'Bearer nope'})
        assert response.status_code == 401

    def test_unauthenticated_request_does_not_stick(self, client, trainer, auth_headers):
        """A rejected request leaves later authenticated requests unaffected"""
        assert client.get('/api/chat/unread').status_code == 401

        response = client.get('/api/chat/unread', headers=auth_headers(trainer))
        assert response.status_code == 200

    def test_each_request_sees_its_own_user(self, client, trainer, client_user, auth_headers):
        client.post(f'/api/chat/{client_user.id}', json={'message': 'Rest day'}, headers=auth_headers(trainer))

        trainer_view = client.get('/api/chat/unread', headers=auth_headers(trainer)).get_json()
        client_view = client.get('/api/chat/unread', headers=auth_headers(client_user)).get_json()

        assert trainer_view['data']['totalUnread'] == 0
        assert client_view['data']['totalUnread'] == 1
        assert client_view['data']['unreadBySender'][0]['senderId'] == trainer.id

    def test_inactive_user_token(self, client, db_session, trainer, auth_headers):
        headers = auth_headers(trainer)
        trainer.is_active = False
        db_session.commit()

        response = client.get('/api/chat/conversations', headers=headers)
        assert response.status_code == 401


class TestConversationsEndpoint:
    """Test suite for GET /api/chat/conversations"""

    def test_lists_recent_conversations(self, client, trainer, client_user, second_client, auth_headers):
        message_store.append_message(trainer.id, second_client.id, body='older')
        message_store.append_message(client_user.id, trainer.id, body='newer')

        response = client.get('/api/chat/conversations', headers=auth_headers(trainer))

        assert response.status_code == 200
        data = response.get_json()['data']
        assert [c['partnerId'] for c in data] == [client_user.id, second_client.id]
        assert data[0]['unreadCount'] == 1
        assert data[1]['isLastMessageFromMe'] is True

    def test_limit_is_bounded(self, client, trainer, auth_headers):
        response = client.get('/api/chat/conversations?limit=500', headers=auth_headers(trainer))

        assert response.status_code == 400
        assert response.get_json()['code'] == 'VALIDATION_ERROR'


class TestUnreadEndpoint:
    """Test suite for GET /api/chat/unread"""

    def test_counts_by_sender(self, client, trainer, client_user, second_client, auth_headers):
        message_store.append_message(client_user.id, trainer.id, body='1')
        message_store.append_message(second_client.id, trainer.id, body='2')
        message_store.append_message(second_client.id, trainer.id, body='3')

        response = client.get('/api/chat/unread', headers=auth_headers(trainer))

        data = response.get_json()['data']
        assert data['totalUnread'] == 3
        by_sender = {entry['senderId']: entry for entry in data['unreadBySender']}
        assert by_sender[client_user.id]['count'] == 1
        assert by_sender[second_client.id]['count'] == 2
        assert by_sender[second_client.id]['senderName'] == 'Blair Client'


class TestHistoryEndpoint:
    """Test suite for GET /api/chat/<partner_id>"""

    def test_page_is_chronological_and_marks_read(self, client, trainer, client_user, auth_headers):
        message_store.append_message(client_user.id, trainer.id, body='first')
        message_store.append_message(trainer.id, client_user.id, body='second')
        message_store.append_message(client_user.id, trainer.id, body='third')

        response = client.get(f'/api/chat/{client_user.id}', headers=auth_headers(trainer))

        assert response.status_code == 200
        body = response.get_json()
        assert [m['message'] for m in body['data']] == ['first', 'second', 'third']
        assert body['data'][1]['isFromMe'] is True
        assert body['pagination'] == {
            'page': 1, 'limit': 50, 'total': 3, 'pages': 1, 'hasNext': False, 'hasPrev': False
        }
        assert body['data'][2]['ageInMinutes'] == 0
        assert body['data'][2]['isFromToday'] is True
        assert body['data'][2]['isRecent'] is True
        assert message_store.unread_count_for(trainer.id) == 0

    def test_reading_history_notifies_partner(self, client, socket_client, trainer, client_user, auth_headers):
        message_store.append_message(client_user.id, trainer.id, body='ping')
        client_sio = socket_client(client_user)
        client_sio.get_received()

        client.get(f'/api/chat/{client_user.id}', headers=auth_headers(trainer))

        assert events_named(client_sio.get_received(), 'messages_read') == [
            {'readerId': trainer.id, 'count': 1}
        ]

    def test_second_page(self, client, trainer, client_user, auth_headers):
        for i in range(5):
            message_store.append_message(trainer.id, client_user.id, body=f'msg {i}')

        response = client.get(f'/api/chat/{trainer.id}?page=2&limit=2', headers=auth_headers(client_user))

        body = response.get_json()
        assert [m['message'] for m in body['data']] == ['msg 1', 'msg 2']
        assert body['pagination']['pages'] == 3
        assert body['pagination']['hasNext'] is True
        assert body['pagination']['hasPrev'] is True

    def test_page_size_is_bounded(self, client, trainer, client_user, auth_headers):
        response = client.get(f'/api/chat/{client_user.id}?limit=101', headers=auth_headers(trainer))
        assert response.status_code == 400

    def test_unlinked_partner_forbidden(self, client, trainer, stranger, auth_headers):
        response = client.get(f'/api/chat/{stranger.id}', headers=auth_headers(trainer))

        assert response.status_code == 403
        assert response.get_json()['code'] == 'CHAT_NOT_ALLOWED'

    def test_unknown_partner(self, client, trainer, auth_headers):
        response = client.get('/api/chat/424242', headers=auth_headers(trainer))
        assert response.status_code == 404


class TestSendEndpoint:
    """Test suite for POST /api/chat/<partner_id>"""

    def test_send_and_push(self, client, socket_client, trainer, client_user, auth_headers):
        client_sio = socket_client(client_user)
        client_sio.get_received()

        response = client.post(
            f'/api/chat/{client_user.id}',
            json={'message': 'New program uploaded'},
            headers=auth_headers(trainer)
        )

        assert response.status_code == 201
        data = response.get_json()['data']
        assert data['message'] == 'New program uploaded'
        assert data['isFromMe'] is True

        pushed = events_named(client_sio.get_received(), 'new_message')
        assert [m['id'] for m in pushed] == [data['id']]

    def test_image_message(self, client, trainer, client_user, auth_headers):
        response = client.post(
            f'/api/chat/{trainer.id}',
            json={'messageType': 'image', 'attachments': ['https://cdn.example.com/progress.png']},
            headers=auth_headers(client_user)
        )

        assert response.status_code == 201
        assert response.get_json()['data']['attachments'] == ['https://cdn.example.com/progress.png']

    def test_invalid_body(self, client, trainer, client_user, auth_headers):
        response = client.post(f'/api/chat/{client_user.id}', json={'message': ''}, headers=auth_headers(trainer))

        assert response.status_code == 400
        assert ChatMessage.query.count() == 0

    def test_no_json(self, client, trainer, client_user, auth_headers):
        response = client.post(f'/api/chat/{client_user.id}', data='hi', headers=auth_headers(trainer))
        assert response.status_code == 400


class TestMarkReadEndpoint:
    """Test suite for PUT /api/chat/<partner_id>/read"""

    def test_marks_partner_messages(self, client, trainer, client_user, auth_headers):
        message_store.append_message(trainer.id, client_user.id, body='a')
        message_store.append_message(trainer.id, client_user.id, body='b')

        response = client.put(f'/api/chat/{trainer.id}/read', headers=auth_headers(client_user))
        again = client.put(f'/api/chat/{trainer.id}/read', headers=auth_headers(client_user))

        assert response.get_json()['data'] == {'markedCount': 2, 'partnerId': trainer.id}
        assert again.get_json()['data']['markedCount'] == 0

    def test_partner_told_even_when_nothing_was_unread(self, client, socket_client, trainer, client_user, auth_headers):
        trainer_sio = socket_client(trainer)
        trainer_sio.get_received()

        client.put(f'/api/chat/{trainer.id}/read', headers=auth_headers(client_user))

        assert events_named(trainer_sio.get_received(), 'messages_read') == [
            {'readerId': client_user.id, 'count': 0}
        ]


class TestSearchEndpoint:
    """Test suite for GET /api/chat/<partner_id>/search"""

    def test_search(self, client, trainer, client_user, auth_headers):
        message_store.append_message(trainer.id, client_user.id, body='Squat form looks great')
        message_store.append_message(client_user.id, trainer.id, body='thanks!')

        response = client.get(f'/api/chat/{client_user.id}/search?query=SQUAT', headers=auth_headers(trainer))

        body = response.get_json()
        assert response.status_code == 200
        assert [m['message'] for m in body['data']] == ['Squat form looks great']
        assert body['searchQuery'] == 'SQUAT'
        assert body['data'][0]['highlightedMessage'] == '<mark>Squat</mark> form looks great'
        assert body['pagination']['total'] == 1

    def test_query_required(self, client, trainer, client_user, auth_headers):
        response = client.get(f'/api/chat/{client_user.id}/search', headers=auth_headers(trainer))
        assert response.status_code == 400


class TestDeleteEndpoint:
    """Test suite for DELETE /api/chat/message/<message_id>"""

    def test_sender_deletes(self, client, socket_client, trainer, client_user, auth_headers):
        message = message_store.append_message(trainer.id, client_user.id, body='wrong link')
        message_id = message.id
        client_sio = socket_client(client_user)
        client_sio.get_received()

        response = client.delete(f'/api/chat/message/{message_id}', headers=auth_headers(trainer))

        assert response.status_code == 200
        assert response.get_json()['data'] == {'deletedMessageId': message_id}
        assert message_store.count_conversation(trainer.id, client_user.id) == 0
        deleted = events_named(client_sio.get_received(), 'message_deleted')
        assert deleted == [{'messageId': message_id, 'senderId': trainer.id, 'receiverId': client_user.id}]

    def test_receiver_cannot_delete(self, client, trainer, client_user, auth_headers):
        message = message_store.append_message(trainer.id, client_user.id, body='keep')

        response = client.delete(f'/api/chat/message/{message.id}', headers=auth_headers(client_user))

        assert response.status_code == 403
        assert response.get_json()['code'] == 'FORBIDDEN'

    def test_missing_message(self, client, trainer, auth_headers):
        response = client.delete('/api/chat/message/99999', headers=auth_headers(trainer))
        assert response.status_code == 404


class TestHealth:
    """Test suite for the health check"""

    def test_health(self, client):
        response = client.get('/health')

        assert response.status_code == 200
        assert response.get_json()['database'] == 'connected'
