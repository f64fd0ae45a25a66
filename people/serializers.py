from rest_framework import serializers
from django.contrib.auth import get_user_model

User = get_user_model()


class UserSerializer(serializers.ModelSerializer):
    class Meta:
        model = User
        fields = ['id', 'username', 'email', 'name']


class ParticipantSerializer(serializers.ModelSerializer):
    name = serializers.CharField(source='display_name', read_only=True)

    class Meta:
        model = User
        fields = ['id', 'name']


class LoginSerializer(serializers.Serializer):
    email = serializers.EmailField()
    password = serializers.CharField(min_length=6, trim_whitespace=False)


class RegistrationSerializer(serializers.Serializer):
    """Request body of the registration endpoint; validation happens in RegistrationForm."""
    username = serializers.CharField()
    email = serializers.EmailField()
    name = serializers.CharField()
    password1 = serializers.CharField()
    password2 = serializers.CharField()
