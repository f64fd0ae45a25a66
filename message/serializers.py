from rest_framework import serializers

from people.serializers import ParticipantSerializer
from .models import Message
from .threads import ThreadKey


class MessageSerializer(serializers.ModelSerializer):
    listing_id = serializers.IntegerField(read_only=True)
    sender_id = serializers.IntegerField(read_only=True)
    receiver_id = serializers.IntegerField(read_only=True)
    thread_id = serializers.SerializerMethodField()
    is_send_by_me = serializers.SerializerMethodField()

    class Meta:
        model = Message
        fields = (
            'id',
            'thread_id',
            'listing_id',
            'sender_id',
            'receiver_id',
            'content',
            'created_at',
            'is_read',
            'is_send_by_me',
        )

    def get_thread_id(self, obj):
        return str(ThreadKey.for_message(obj))

    def get_is_send_by_me(self, obj):
        request = self.context.get("request")
        if not request or not request.user.is_authenticated:
            return False
        return obj.sender_id == request.user.id


class SendMessageSerializer(serializers.Serializer):
    listing_id = serializers.IntegerField()
    receiver_id = serializers.IntegerField()
    content = serializers.CharField(trim_whitespace=True)


class ConversationListingSerializer(serializers.Serializer):
    id = serializers.IntegerField()
    title = serializers.CharField()
    address = serializers.CharField()


class LastMessageSerializer(serializers.Serializer):
    id = serializers.IntegerField()
    sender_id = serializers.IntegerField()
    content = serializers.CharField()
    created_at = serializers.DateTimeField()


class ConversationSerializer(serializers.Serializer):
    thread_id = serializers.CharField(source='key')
    listing = ConversationListingSerializer()
    other_user = ParticipantSerializer(source='other')
    last_message = LastMessageSerializer()
    unread_count = serializers.IntegerField()
