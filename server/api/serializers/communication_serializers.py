from rest_framework import serializers

from main.models import COMMENT_PARENT_MODELS, Announcement, Comment, Message, Post
from notification.models import Notification


class MessageSerializer(serializers.ModelSerializer):
    sender_email = serializers.EmailField(source='sender.email', read_only=True)

    class Meta:
        model = Message
        fields = ['id', 'sender', 'sender_email', 'recipient', 'subject', 'content', 'is_read', 'created_at']
        read_only_fields = fields


class AnnouncementSerializer(serializers.ModelSerializer):
    author_name = serializers.CharField(source='author.full_name', read_only=True, default=None)

    class Meta:
        model = Announcement
        fields = ['id', 'school', 'title', 'content', 'author', 'author_name',
                  'target_role', 'priority', 'is_active', 'created_at']
        read_only_fields = fields


class PostSerializer(serializers.ModelSerializer):
    class Meta:
        model = Post
        fields = ['id', 'school', 'author', 'title', 'content', 'image_url',
                  'category', 'is_published', 'published_at']
        read_only_fields = fields


class CommentSerializer(serializers.ModelSerializer):
    parent_type = serializers.SerializerMethodField()
    parent_id = serializers.UUIDField(source='object_id', read_only=True)

    class Meta:
        model = Comment
        fields = ['id', 'author', 'parent_type', 'parent_id', 'content', 'created_at']
        read_only_fields = fields

    def get_parent_type(self, obj):
        label = obj.content_type.model_class()._meta.label
        for kind, model_label in COMMENT_PARENT_MODELS.items():
            if model_label == label:
                return kind
        return None


class CommentCreateSerializer(serializers.Serializer):
    parent_type = serializers.ChoiceField(choices=sorted(COMMENT_PARENT_MODELS))
    parent_id = serializers.UUIDField()
    content = serializers.CharField()


class NotificationSerializer(serializers.ModelSerializer):
    class Meta:
        model = Notification
        fields = ['id', 'title', 'message', 'type', 'is_read', 'action_url', 'created_at']
        read_only_fields = fields
