from django.conf import settings
from rest_framework import serializers

from people.serializers import ParticipantSerializer
from .models import Listing, ListingImage


class ListingImageSerializer(serializers.ModelSerializer):
    class Meta:
        model = ListingImage
        fields = ['id', 'image', 'uploaded_at']


class ListingSerializer(serializers.ModelSerializer):
    owner = ParticipantSerializer(read_only=True)
    images = ListingImageSerializer(many=True, read_only=True)

    class Meta:
        model = Listing
        fields = [
            'id',
            'owner',
            'title',
            'description',
            'address',
            'price',
            'size',
            'rooms',
            'type',
            'cover_img',
            'images',
            'available',
            'created_at',
            'updated_at',
        ]
        read_only_fields = ['created_at', 'updated_at']


class ListingSearchSerializer(serializers.Serializer):
    SORT_CHOICES = ['price_asc', 'price_desc', 'date_asc', 'date_desc']

    query = serializers.CharField(required=False, allow_blank=True)
    type = serializers.ChoiceField(choices=Listing.TYPE_CHOICES, required=False)
    min_price = serializers.IntegerField(required=False, min_value=0)
    max_price = serializers.IntegerField(required=False, min_value=0)
    min_rooms = serializers.IntegerField(required=False, min_value=0)
    max_rooms = serializers.IntegerField(required=False, min_value=0)
    sort_by = serializers.ChoiceField(choices=SORT_CHOICES, default='date_desc')

    def validate(self, attrs):
        for low, high in (('min_price', 'max_price'), ('min_rooms', 'max_rooms')):
            if low in attrs and high in attrs and attrs[low] > attrs[high]:
                raise serializers.ValidationError({high: f"Must be at least {low}."})
        return attrs


class ImageUploadSerializer(serializers.Serializer):
    image = serializers.ImageField()

    def validate_image(self, image):
        content_type = getattr(image, 'content_type', '') or ''
        if not content_type.startswith('image/'):
            raise serializers.ValidationError("Only image files are allowed.")
        if image.size > settings.LISTING_IMAGE_MAX_BYTES:
            raise serializers.ValidationError("Image is too large.")
        return image
