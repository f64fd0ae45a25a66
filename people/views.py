import logging

from django.contrib.auth import authenticate, get_user_model, login, logout
from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework.response import Response
from drf_yasg.utils import swagger_auto_schema

from .forms import RegistrationForm
from .serializers import LoginSerializer, RegistrationSerializer, UserSerializer

logger = logging.getLogger(__name__)
User = get_user_model()


# ============= Authentication ===============
@swagger_auto_schema(method="POST", request_body=RegistrationSerializer, responses={201: UserSerializer})
@api_view(["POST"])
@permission_classes([AllowAny])
def register(request):
    form = RegistrationForm(request.data)
    if not form.is_valid():
        return Response(form.errors, status=status.HTTP_400_BAD_REQUEST)

    user = form.save()
    login(request, user)
    logger.info("Registered user %s", user.id)
    return Response(UserSerializer(user).data, status=status.HTTP_201_CREATED)


@swagger_auto_schema(method="POST", request_body=LoginSerializer, responses={200: UserSerializer})
@api_view(["POST"])
@permission_classes([AllowAny])
def login_view(request):
    serializer = LoginSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    email = serializer.validated_data["email"]

    # Accounts are addressed by email; the auth backend still keys on username.
    account = User.objects.filter(email__iexact=email).first()
    user = None
    if account is not None:
        user = authenticate(
            request,
            username=account.username,
            password=serializer.validated_data["password"],
        )
    if user is None:
        logger.info("Failed login for %s", email)
        return Response(
            {"error": "Invalid email or password"},
            status=status.HTTP_401_UNAUTHORIZED
        )

    login(request, user)
    return Response(UserSerializer(user).data, status=status.HTTP_200_OK)


@swagger_auto_schema(method="POST")
@api_view(["POST"])
@permission_classes([AllowAny])
def logout_view(request):
    logout(request)
    return Response({"message": "Logged out successfully"}, status=status.HTTP_200_OK)


@swagger_auto_schema(method="GET", responses={200: UserSerializer})
@api_view(["GET"])
@permission_classes([IsAuthenticated])
def me(request):
    return Response(UserSerializer(request.user).data)
