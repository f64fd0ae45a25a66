from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.exceptions import NotFound, ValidationError
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from drf_yasg.utils import swagger_auto_schema

from .serializers import ConversationSerializer, MessageSerializer, SendMessageSerializer
from .services import (
    get_thread_messages,
    list_conversations,
    listing_messages,
    mark_read,
    mark_thread_read,
    send_message,
    user_messages,
)
from .threads import ThreadKey


def _thread_key_for(request, thread_id: str) -> ThreadKey:
    try:
        key = ThreadKey.parse(thread_id)
    except ValueError:
        raise ValidationError({"thread_id": "Expected <listing>-<user>-<user>."})
    if not key.includes(request.user.id):
        raise NotFound("Thread not found.")
    return key


@swagger_auto_schema(method="GET", responses={200: MessageSerializer(many=True)})
@swagger_auto_schema(method="POST", request_body=SendMessageSerializer, responses={201: MessageSerializer})
@api_view(["GET", "POST"])
@permission_classes([IsAuthenticated])
def message_list(request):
    if request.method == "GET":
        return Response(
            MessageSerializer(user_messages(request.user.id), many=True, context={"request": request}).data
        )

    serializer = SendMessageSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    message = send_message(
        sender_id=request.user.id,
        receiver_id=serializer.validated_data["receiver_id"],
        listing_id=serializer.validated_data["listing_id"],
        content=serializer.validated_data["content"],
    )
    return Response(
        MessageSerializer(message, context={"request": request}).data,
        status=status.HTTP_201_CREATED
    )


@swagger_auto_schema(method="GET", responses={200: ConversationSerializer(many=True)})
@api_view(["GET"])
@permission_classes([IsAuthenticated])
def conversations(request):
    return Response(ConversationSerializer(list_conversations(request.user.id), many=True).data)


@swagger_auto_schema(method="GET", responses={200: MessageSerializer(many=True)})
@api_view(["GET"])
@permission_classes([IsAuthenticated])
def thread(request, thread_id: str):
    key = _thread_key_for(request, thread_id)
    messages = get_thread_messages(request.user.id, key.listing_id, key.other(request.user.id))
    return Response({
        "thread_id": str(key),
        "messages": MessageSerializer(messages, many=True, context={"request": request}).data,
    })


@swagger_auto_schema(method="POST")
@api_view(["POST"])
@permission_classes([IsAuthenticated])
def thread_read(request, thread_id: str):
    key = _thread_key_for(request, thread_id)
    return Response({"thread_id": str(key), "marked": mark_thread_read(request.user.id, key)})


@swagger_auto_schema(methods=["PUT", "POST"], responses={200: MessageSerializer})
@api_view(["PUT", "POST"])
@permission_classes([IsAuthenticated])
def message_read(request, id: int):
    message = mark_read(id, request.user.id)
    return Response(MessageSerializer(message, context={"request": request}).data)


@swagger_auto_schema(method="GET", responses={200: MessageSerializer(many=True)})
@api_view(["GET"])
@permission_classes([IsAuthenticated])
def listing_thread_messages(request, id: int):
    messages = listing_messages(request.user.id, id)
    return Response(MessageSerializer(messages, many=True, context={"request": request}).data)
