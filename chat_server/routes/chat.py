"""Chat REST API routes.

The HTTP surface mirrors what the Socket.IO gateway offers, for clients that
are not connected or are loading history. Sends and read receipts made here
fan out to connected clients exactly as their socket counterparts do.

Endpoints:
- GET    /chat/conversations                    - List conversations (paginated, with totalUnread)
- GET    /chat/conversations/{id}               - Conversation details
- POST   /chat/conversations/user/{userId}      - Get or create the conversation with a user
- GET    /chat/conversations/{id}/messages      - Message history (paginated, chronological)
- PATCH  /chat/conversations/{id}/read          - Mark conversation read
- DELETE /chat/conversations/{id}               - Soft-delete a conversation
- POST   /chat/messages                         - Send a message
- DELETE /chat/messages/{id}                    - Soft-delete own message
- POST   /chat/upload                           - Upload an attachment and send it
- GET    /chat/online-status/{userId}           - Presence of one user
- POST   /chat/online-status/bulk               - Presence of many users
- GET    /chat/unread-count                     - Total unread across conversations
"""
import logging

from flask import Blueprint, current_app, request

from chat_server.exception.ChatError import ValidationError
from chat_server.messaging.models import MessageType
from chat_server.storage.file_storage import is_image
from chat_server.utils.decorators import handle_errors, log_request, require_auth, validate_json
from chat_server.utils.helpers import parse_pagination, respond_error, respond_success
from config import config

logger = logging.getLogger(__name__)

chat_bp = Blueprint('chat', __name__, url_prefix='/chat')


def _service():
    return current_app.extensions['chat_service']


def _paging(default_limit: int):
    page, limit, errors = parse_pagination(
        request.args, default_limit=default_limit, max_limit=_service().max_page_size)
    if errors:
        raise ValidationError('; '.join(errors.values()))
    return page, limit


# =============================================================================
# Conversation Endpoints
# =============================================================================

@chat_bp.route('/conversations', methods=['GET'])
@handle_errors
@require_auth
def list_conversations(auth_payload):
    """List the caller's conversations, most recent activity first.

    Query Params:
        page: int - 1-indexed page (default: 1)
        limit: int - Page size (default: 20, max: 100)

    Response:
        {
            "conversations": [...],
            "total": 12, "page": 1, "limit": 20, "totalPages": 1,
            "hasMore": false, "totalUnread": 3
        }
    """
    page, limit = _paging(config.CONVERSATIONS_PAGE_SIZE)
    result = _service().list_conversations(auth_payload['user_id'], page=page, limit=limit)
    return respond_success(result)


@chat_bp.route('/conversations/<conversation_id>', methods=['GET'])
@handle_errors
@require_auth
def get_conversation(conversation_id, auth_payload):
    conversation = _service().get_conversation(conversation_id, auth_payload['user_id'])
    return respond_success({'conversation': conversation})


@chat_bp.route('/conversations/user/<user_id>', methods=['POST'])
@handle_errors
@require_auth
@log_request
def get_or_create_conversation(user_id, auth_payload):
    """Get the conversation with ``user_id``, creating it on first contact."""
    service = _service()
    caller = auth_payload['user_id']
    conversation = service.get_or_create_conversation(caller, user_id)
    return respond_success({'conversation': service.conversation_payload(conversation, caller)})


@chat_bp.route('/conversations/<conversation_id>/messages', methods=['GET'])
@handle_errors
@require_auth
def list_messages(conversation_id, auth_payload):
    """Message history, oldest first within a page; page 1 holds the newest messages.

    Query Params:
        page: int - 1-indexed page (default: 1)
        limit: int - Page size (default: 50, max: 100)
    """
    page, limit = _paging(config.MESSAGES_PAGE_SIZE)
    result = _service().list_messages(conversation_id, auth_payload['user_id'], page=page, limit=limit)
    return respond_success(result)


@chat_bp.route('/conversations/<conversation_id>/read', methods=['PATCH'])
@handle_errors
@require_auth
def mark_conversation_read(conversation_id, auth_payload):
    result = _service().mark_conversation_read(conversation_id, auth_payload['user_id'])
    return respond_success({
        'count': result['count'],
        'conversationId': conversation_id,
        'messageIds': result['messageIds'],
        'readAt': result['readAt'],
    })


@chat_bp.route('/conversations/<conversation_id>', methods=['DELETE'])
@handle_errors
@require_auth
@log_request
def delete_conversation(conversation_id, auth_payload):
    deleted = _service().delete_conversation(conversation_id, auth_payload['user_id'])
    return respond_success({'conversationId': conversation_id, 'deleted': deleted})


# =============================================================================
# Message Endpoints
# =============================================================================

@chat_bp.route('/messages', methods=['POST'])
@handle_errors
@require_auth
@validate_json('receiverId')
def send_message(auth_payload):
    """Send a message.

    Request Body:
        {
            "receiverId": "...",           (required)
            "conversationId": "...",       (optional)
            "content": "Hello",            (required for text)
            "messageType": "text",         (text | image | file | system)
            "metadata": {...},
            "tempId": "client-123"
        }

    Response (201):
        { "message": {...} }
    """
    data = request.get_json(silent=True) or {}
    service = _service()
    temp_id = data.get('tempId')
    message, _ = service.send_message(
        auth_payload['user_id'],
        data.get('receiverId'),
        data.get('content'),
        conversation_id=data.get('conversationId'),
        message_type=data.get('messageType'),
        metadata=data.get('metadata'),
        temp_id=temp_id,
    )
    return respond_success({'message': service.message_payload(message, temp_id=temp_id)}, status=201)


@chat_bp.route('/messages/<message_id>', methods=['DELETE'])
@handle_errors
@require_auth
@log_request
def delete_message(message_id, auth_payload):
    result = _service().delete_message(message_id, auth_payload['user_id'])
    return respond_success(result)


@chat_bp.route('/upload', methods=['POST'])
@handle_errors
@require_auth
@log_request
def upload_attachment(auth_payload):
    """Upload a file and send it as an image or file message.

    Form Fields:
        file: the attachment (required)
        receiverId: str (required)
        conversationId: str (optional)
        caption: str (optional; becomes the message content)
        tempId: str (optional)

    Response (201):
        { "file": {key, url, fileName, mimeType, size}, "message": {...} }
    """
    upload = request.files.get('file')
    if upload is None or not upload.filename:
        return respond_error('No file uploaded', status=400, code='VALIDATION_ERROR')
    receiver_id = request.form.get('receiverId')
    if not receiver_id:
        raise ValidationError('receiverId is required')

    storage = current_app.extensions['chat_storage']
    data = upload.read()
    key = storage.store(data, upload.mimetype, upload.filename)
    url = storage.url_for(key)
    caption = (request.form.get('caption') or '').strip()
    temp_id = request.form.get('tempId')

    service = _service()
    try:
        message, _ = service.send_message(
            auth_payload['user_id'],
            receiver_id,
            caption or url,
            conversation_id=request.form.get('conversationId'),
            message_type=MessageType.IMAGE if is_image(upload.filename) else MessageType.FILE,
            metadata={
                'fileUrl': url,
                'fileName': upload.filename,
                'mimeType': upload.mimetype,
                'caption': caption or None,
            },
            temp_id=temp_id,
        )
    except Exception:
        # no message references the file
        storage.delete(key)
        raise
    return respond_success({
        'file': {
            'key': key,
            'url': url,
            'fileName': upload.filename,
            'mimeType': upload.mimetype,
            'size': len(data),
        },
        'message': service.message_payload(message, temp_id=temp_id),
    }, status=201)


# =============================================================================
# Presence & Counters
# =============================================================================

@chat_bp.route('/online-status/<user_id>', methods=['GET'])
@handle_errors
@require_auth
def get_online_status(user_id, auth_payload):
    return respond_success({'userId': user_id, 'isOnline': _service().is_user_online(user_id)})


@chat_bp.route('/online-status/bulk', methods=['POST'])
@handle_errors
@require_auth
@validate_json('userIds')
def get_bulk_online_status(auth_payload):
    data = request.get_json(silent=True) or {}
    user_ids = data.get('userIds')
    if not isinstance(user_ids, list):
        raise ValidationError('userIds must be a list')
    return respond_success(_service().get_online_statuses(user_ids))


@chat_bp.route('/unread-count', methods=['GET'])
@handle_errors
@require_auth
def get_unread_count(auth_payload):
    return respond_success({'totalUnread': _service().get_total_unread(auth_payload['user_id'])})
