from django.dispatch import Signal

# Sent after a message is stored; kwargs: message_id.
message_created = Signal()
