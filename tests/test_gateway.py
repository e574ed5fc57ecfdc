"""Socket.IO gateway tests through Flask-SocketIO's test client."""
from unittest.mock import patch

import pytest
from socketio import packet

from chat_server.messaging.models import ConnectionState
from conftest import make_token

NS = '/chat'


def _events(sio_client, name):
    return [pkt['args'][0] for pkt in sio_client.get_received(NS) if pkt['name'] == name]


def _gateway(app):
    return app.extensions['chat_gateway']


# =============================================================================
# Connection lifecycle
# =============================================================================


def test_connect_with_auth_payload(app, socket_client, users):
    alice = socket_client('alice')

    assert alice.is_connected(NS)
    states = {c['user_id']: c['state'] for c in _gateway(app).connections.values()}
    assert states == {users['alice']: ConnectionState.ACTIVE}
    assert all(set(c) == {'user_id', 'state'} for c in _gateway(app).connections.values())
    assert app.extensions['chat_presence'].is_online(users['alice'])


def test_connect_without_token_is_refused(app, socket_client):
    anonymous = socket_client()

    assert not anonymous.is_connected(NS)
    assert _gateway(app).connections == {}


def test_connect_with_bad_token_is_refused(socket_client):
    assert not socket_client(token='not.a.token').is_connected(NS)


def test_connect_inactive_user_is_refused(socket_client, users):
    assert not socket_client(token=make_token(users['dave'])).is_connected(NS)


@pytest.mark.parametrize('token_for,reason', [
    (None, 'Authentication required'),
    ('garbage', 'Authentication failed'),
    ('dave', 'Authentication failed'),
])
def test_refused_handshake_carries_reason(app, socket_client, users, token_for, reason):
    refused = socket_client()
    server = app.extensions['socketio'].server
    deliver = server._send_packet
    sent = []

    def record(eio_sid, pkt):
        sent.append(pkt)
        deliver(eio_sid, pkt)

    if token_for is None:
        auth = None
    elif token_for in users:
        auth = {'token': make_token(users[token_for])}
    else:
        auth = {'token': token_for}
    with patch.object(server, '_send_packet', side_effect=record):
        refused.connect(namespace=NS, auth=auth)

    assert not refused.is_connected(NS)
    assert [p.data for p in sent if p.packet_type == packet.CONNECT_ERROR] == [{'message': reason}]
    # nothing may precede the refusal on a namespace the client never joined
    assert [p for p in sent if p.packet_type == packet.EVENT] == []
    assert _gateway(app).connections == {}


def test_header_token_takes_precedence(app, socket_client, users):
    client = socket_client(
        token=make_token(users['bob']),
        headers={'Authorization': f"Bearer {make_token(users['alice'])}"},
    )

    assert client.is_connected(NS)
    assert [c['user_id'] for c in _gateway(app).connections.values()] == [users['alice']]


def test_query_string_token(app, socket_client, users):
    client = socket_client(query_string=f"token={make_token(users['carol'])}")

    assert client.is_connected(NS)
    assert [c['user_id'] for c in _gateway(app).connections.values()] == [users['carol']]


def test_presence_broadcasts(app, socket_client, users):
    alice = socket_client('alice')
    bob = socket_client('bob')

    online = _events(alice, 'user_online')
    assert online == [{'userId': users['bob'], 'isOnline': True, 'lastSeen': None}]

    bob.disconnect(namespace=NS)

    offline = _events(alice, 'user_offline')
    assert offline[0]['userId'] == users['bob']
    assert offline[0]['isOnline'] is False
    assert offline[0]['lastSeen']
    assert not app.extensions['chat_presence'].is_online(users['bob'])


def test_second_socket_keeps_user_online(app, socket_client, users):
    first = socket_client('bob')
    socket_client('bob')

    first.disconnect(namespace=NS)

    assert app.extensions['chat_presence'].is_online(users['bob'])


def test_connect_marks_pending_messages_delivered(app, socket_client, users):
    service = app.extensions['chat_service']
    sent = [service.send_message(users['alice'], users['bob'], f'm{i}')[0] for i in range(3)]

    socket_client('bob')

    for message in sent:
        stored = service.messages.find_by_id(message.message_id)
        assert stored['status'] == 'delivered'


# =============================================================================
# Messaging events
# =============================================================================


def test_send_message_reaches_both_sides(socket_client, users):
    alice = socket_client('alice')
    bob = socket_client('bob')
    alice.get_received(NS)

    ack = alice.emit('send_message', {'receiverId': users['bob'], 'content': 'hey', 'tempId': 't1'},
                     namespace=NS, callback=True)

    assert ack['success'] is True
    assert ack['message']['tempId'] == 't1'

    alice_events = alice.get_received(NS)
    assert [p['args'][0]['content'] for p in alice_events if p['name'] == 'receive_message'] == ['hey']
    alice_updates = [p['args'][0] for p in alice_events if p['name'] == 'conversation_updated']
    assert alice_updates[0]['unreadCount'] == 0

    bob_events = bob.get_received(NS)
    received = [p['args'][0] for p in bob_events if p['name'] == 'receive_message']
    assert received[0]['content'] == 'hey'
    assert received[0]['tempId'] == 't1'
    bob_updates = [p['args'][0] for p in bob_events if p['name'] == 'conversation_updated']
    assert bob_updates[0]['unreadCount'] == 1
    assert bob_updates[0]['lastMessage'] == 'hey'


def test_send_message_error_keeps_connection(socket_client, users):
    alice = socket_client('alice')
    alice.get_received(NS)

    ack = alice.emit('send_message', {'receiverId': users['bob'], 'content': '   ', 'tempId': 't9'},
                     namespace=NS, callback=True)

    assert ack['success'] is False
    errors = _events(alice, 'message_error')
    assert errors[0]['tempId'] == 't9'
    assert errors[0]['error']
    assert alice.is_connected(NS)


def test_send_to_self_is_rejected(socket_client, users):
    alice = socket_client('alice')

    ack = alice.emit('send_message', {'receiverId': users['alice'], 'content': 'me'},
                     namespace=NS, callback=True)

    assert ack['success'] is False


def test_mark_read_notifies_sender(app, socket_client, users):
    service = app.extensions['chat_service']
    _, conversation = service.send_message(users['alice'], users['bob'], 'hi')
    alice = socket_client('alice')
    bob = socket_client('bob')
    alice.get_received(NS)
    bob.get_received(NS)

    ack = bob.emit('mark_read', {'conversationId': conversation.conversation_id}, namespace=NS, callback=True)

    assert ack == {'success': True, 'count': 1}
    read = _events(alice, 'messages_read')
    assert read[0]['readBy'] == users['bob']
    assert len(read[0]['messageIds']) == 1
    assert _events(bob, 'unread_count') == [{'conversationId': conversation.conversation_id, 'unreadCount': 0}]


def test_mark_read_twice_emits_nothing_new(app, socket_client, users):
    service = app.extensions['chat_service']
    _, conversation = service.send_message(users['alice'], users['bob'], 'hi')
    bob = socket_client('bob')
    bob.emit('mark_read', {'conversationId': conversation.conversation_id}, namespace=NS)
    bob.get_received(NS)

    ack = bob.emit('mark_read', {'conversationId': conversation.conversation_id}, namespace=NS, callback=True)

    assert ack['count'] == 0
    assert _events(bob, 'unread_count') == []


def test_mark_read_outsider_gets_error(app, socket_client, users):
    service = app.extensions['chat_service']
    _, conversation = service.send_message(users['alice'], users['bob'], 'hi')
    carol = socket_client('carol')
    carol.get_received(NS)

    ack = carol.emit('mark_read', {'conversationId': conversation.conversation_id}, namespace=NS, callback=True)

    assert ack['success'] is False
    assert _events(carol, 'error')
    assert carol.is_connected(NS)


# =============================================================================
# Typing, rooms, presence queries
# =============================================================================


def test_typing_relayed_to_other_participant(app, socket_client, users):
    conversation = app.extensions['chat_service'].get_or_create_conversation(users['alice'], users['bob'])
    alice = socket_client('alice')
    bob = socket_client('bob')
    bob.get_received(NS)

    alice.emit('typing_start', {'conversationId': conversation.conversation_id}, namespace=NS)

    assert _events(bob, 'user_typing') == [{
        'conversationId': conversation.conversation_id,
        'userId': users['alice'],
        'isTyping': True,
    }]
    assert app.extensions['chat_typing'].is_typing(conversation.conversation_id, users['alice'])

    alice.emit('typing_stop', {'conversationId': conversation.conversation_id}, namespace=NS)
    assert _events(bob, 'user_typing')[0]['isTyping'] is False
    assert not app.extensions['chat_typing'].is_typing(conversation.conversation_id, users['alice'])


def test_join_and_leave_conversation(app, socket_client, users):
    conversation = app.extensions['chat_service'].get_or_create_conversation(users['alice'], users['bob'])
    cid = conversation.conversation_id
    alice = socket_client('alice')
    carol = socket_client('carol')

    assert alice.emit('join_conversation', {'conversationId': cid}, namespace=NS, callback=True)['success'] is True
    assert carol.emit('join_conversation', {'conversationId': cid}, namespace=NS, callback=True)['success'] is False

    alice.get_received(NS)
    carol.get_received(NS)
    _gateway(app).send_to_conversation_room(cid, 'conversation_updated', {'conversationId': cid})
    assert _events(alice, 'conversation_updated') == [{'conversationId': cid}]
    assert _events(carol, 'conversation_updated') == []

    assert alice.emit('leave_conversation', {'conversationId': cid}, namespace=NS, callback=True)['success'] is True
    _gateway(app).send_to_conversation_room(cid, 'conversation_updated', {'conversationId': cid})
    assert _events(alice, 'conversation_updated') == []


def test_get_online_status(socket_client, users):
    alice = socket_client('alice')
    socket_client('bob')

    statuses = alice.emit('get_online_status', {'userIds': [users['bob'], users['carol']]},
                          namespace=NS, callback=True)

    assert statuses == [
        {'userId': users['bob'], 'isOnline': True},
        {'userId': users['carol'], 'isOnline': False},
    ]


def test_ping_answers_pong(socket_client):
    alice = socket_client('alice')
    alice.get_received(NS)

    alice.emit('ping', {}, namespace=NS)

    pongs = _events(alice, 'pong')
    assert len(pongs) == 1
    assert pongs[0]['timestamp']


def test_http_send_fans_out_to_socket(client, socket_client, users):
    bob = socket_client('bob')
    bob.get_received(NS)

    resp = client.post('/chat/messages',
                       headers={'Authorization': f"Bearer {make_token(users['alice'])}"},
                       json={'receiverId': users['bob'], 'content': 'over http'})

    assert resp.status_code == 201
    assert _events(bob, 'receive_message')[0]['content'] == 'over http'


def test_any_event_refreshes_lapsed_presence(app, socket_client, users):
    presence = app.extensions['chat_presence']
    alice = socket_client('alice')
    # the TTL ran out without a ping
    presence.set_offline(users['alice'])

    alice.emit('get_online_status', {'userIds': [users['bob']]}, namespace=NS, callback=True)

    assert presence.is_online(users['alice'])
