from rest_framework import serializers

from dispatch.models import FLOOR_CHOICES, User


class LoginSerializer(serializers.Serializer):
    username = serializers.CharField()
    password = serializers.CharField()

    def validate_username(self, v):
        v = (v or '').strip()
        if not v:
            raise serializers.ValidationError('Username is required')
        return v

    def validate_password(self, v):
        if not v:
            raise serializers.ValidationError('Password is required')
        return v


def user_data(user: User) -> dict:
    return {
        'id': user.id,
        'username': user.username,
        'email': user.email,
        'firstName': user.first_name,
        'lastName': user.last_name,
        'name': user.get_full_name() or user.username,
        'role': user.role,
        'primaryFloor': user.primary_floor,
        'phoneNumber': user.phone_number,
        'isActive': user.is_active,
        'includeInAnalytics': user.include_in_analytics,
    }


class UserWriteSerializer(serializers.Serializer):
    """Manager-side create/update of staff accounts."""
    username = serializers.CharField(max_length=150, required=False)
    email = serializers.EmailField(required=False, allow_blank=True)
    password = serializers.CharField(required=False, write_only=True, min_length=8)
    first_name = serializers.CharField(max_length=150, required=False, allow_blank=True)
    last_name = serializers.CharField(max_length=150, required=False, allow_blank=True)
    role = serializers.ChoiceField(choices=User.ROLE_CHOICES, required=False)
    primary_floor = serializers.ChoiceField(choices=FLOOR_CHOICES, required=False, allow_null=True)
    phone_number = serializers.CharField(max_length=32, required=False, allow_blank=True)
    is_active = serializers.BooleanField(required=False)
    include_in_analytics = serializers.BooleanField(required=False)

    def validate_username(self, v):
        v = v.strip()
        qs = User.objects.filter(username__iexact=v)
        if self.instance is not None:
            qs = qs.exclude(pk=self.instance.pk)
        if qs.exists():
            raise serializers.ValidationError('Username already exists')
        return v

    def validate(self, attrs):
        if self.instance is None:
            missing = [f for f in ('username', 'password') if not attrs.get(f)]
            if missing:
                raise serializers.ValidationError({f: 'This field is required.' for f in missing})
        return attrs

    def create(self, validated_data):
        password = validated_data.pop('password')
        return User.objects.create_user(password=password, **validated_data)

    def update(self, instance, validated_data):
        password = validated_data.pop('password', None)
        for field, value in validated_data.items():
            setattr(instance, field, value)
        if password:
            instance.set_password(password)
        instance.save()
        return instance
