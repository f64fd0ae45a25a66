from django.db import models
from django.conf import settings
from django.core.validators import MinValueValidator


class Listing(models.Model):
    TYPE_CHOICES = [
        ("apartment", "Apartment"),
        ("house", "House"),
        ("room", "Room"),
    ]

    owner = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="listings"
    )

    title = models.CharField(max_length=255)
    description = models.TextField()
    address = models.CharField(max_length=500)
    price = models.PositiveIntegerField(validators=[MinValueValidator(1)])  # monthly rent, DKK
    size = models.PositiveIntegerField(validators=[MinValueValidator(1)])  # square meters
    rooms = models.PositiveIntegerField(validators=[MinValueValidator(1)])
    type = models.CharField(max_length=20, choices=TYPE_CHOICES)
    cover_img = models.ImageField(
        upload_to="listing/",
        blank=True,
        null=True
    )
    available = models.BooleanField(default=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at", "-id"]

    def __str__(self):
        return self.title


class ListingImage(models.Model):
    listing = models.ForeignKey(Listing, on_delete=models.CASCADE, related_name="images")
    image = models.ImageField(upload_to="listing/gallery/")
    uploaded_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["uploaded_at", "id"]
