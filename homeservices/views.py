"""API views for the home-services marketplace."""
from __future__ import annotations

from django.contrib.auth import authenticate
from django.contrib.auth.models import User
from django.db import transaction
from django.db.models import Q
from rest_framework import generics, mixins, permissions, status, viewsets
from rest_framework.authtoken.models import Token
from rest_framework.decorators import action, api_view, permission_classes
from rest_framework.response import Response

from .bookings import BookingService
from .exceptions import AuthorizationError, ValidationError
from .jobs import JobService
from .models import Booking, CustomerProfile, Job, Notification, WorkerProfile
from .notifications import mark_all_read, mark_read, unread_count
from .serializers import (
    AssignWorkerSerializer,
    BookingSerializer,
    CancelRequestSerializer,
    JobSerializer,
    NotificationSerializer,
    ReviewRequestSerializer,
    VerifyCompletionSerializer,
    WorkerStatsSerializer,
)


def customer_for(user) -> CustomerProfile:
    try:
        return user.customerprofile
    except CustomerProfile.DoesNotExist as exc:
        raise AuthorizationError('Customer account required') from exc


def worker_for(user) -> WorkerProfile:
    try:
        return user.workerprofile
    except WorkerProfile.DoesNotExist as exc:
        raise AuthorizationError('Worker account required') from exc


def kind_for(request) -> str:
    kind = request.query_params.get('as')
    if kind:
        kind = kind.capitalize()
        if kind not in dict(Notification.KIND_CHOICES):
            raise ValidationError({'as': [f'Unknown recipient kind "{request.query_params["as"]}".']})
        return kind
    if request.user.is_staff:
        return Notification.KIND_ADMIN
    if hasattr(request.user, 'workerprofile'):
        return Notification.KIND_WORKER
    return Notification.KIND_CUSTOMER


class RegisterCustomerView(generics.GenericAPIView):
    permission_classes = [permissions.AllowAny]

    def post(self, request, *args, **kwargs):
        with transaction.atomic():
            user = User.objects.create_user(
                username=request.data.get('username'),
                email=request.data.get('email', ''),
                password=request.data.get('password'),
            )
            profile = CustomerProfile.objects.create(
                user=user,
                phone=request.data.get('phone', ''),
                push_token=request.data.get('push_token', ''),
            )
        return Response({'id': str(profile.pk), 'username': user.username}, status=status.HTTP_201_CREATED)


class RegisterWorkerView(generics.GenericAPIView):
    permission_classes = [permissions.AllowAny]

    def post(self, request, *args, **kwargs):
        with transaction.atomic():
            user = User.objects.create_user(
                username=request.data.get('username'),
                email=request.data.get('email', ''),
                password=request.data.get('password'),
            )
            profile = WorkerProfile.objects.create(
                user=user,
                phone=request.data.get('phone', ''),
                services=request.data.get('services', []),
                push_token=request.data.get('push_token', ''),
            )
        return Response({'id': str(profile.pk), 'username': user.username}, status=status.HTTP_201_CREATED)


@api_view(['POST'])
@permission_classes([permissions.AllowAny])
def login_view(request):
    user = authenticate(username=request.data.get('username'), password=request.data.get('password'))
    if not user:
        return Response({'detail': 'Invalid credentials'}, status=status.HTTP_400_BAD_REQUEST)
    token, _ = Token.objects.get_or_create(user=user)
    return Response({'token': token.key})


class BookingViewSet(mixins.ListModelMixin, viewsets.GenericViewSet):
    serializer_class = BookingSerializer
    permission_classes = [permissions.IsAuthenticated]

    def get_queryset(self):
        service = BookingService()
        user = self.request.user
        if self.request.query_params.get('as') == 'worker':
            qs = service.for_worker(worker_for(user))
        elif user.is_staff:
            qs = Booking.objects.top_level().select_related('worker__user')
        else:
            qs = service.for_customer(customer_for(user))
        status_filter = self.request.query_params.get('status')
        if status_filter:
            qs = qs.filter(status=status_filter)
        return qs

    def respond(self, booking: Booking, code=status.HTTP_200_OK) -> Response:
        owner = booking.customer.user_id == self.request.user.pk
        serializer = BookingSerializer(booking, context={'request': self.request, 'show_completion_otp': owner})
        return Response(serializer.data, status=code)

    def create(self, request, *args, **kwargs):
        booking = BookingService().create(customer_for(request.user), request.data)
        return self.respond(booking, status.HTTP_201_CREATED)

    @action(detail=False, methods=['post'])
    def multiple(self, request):
        booking = BookingService().create_multiple(customer_for(request.user), request.data)
        return self.respond(booking, status.HTTP_201_CREATED)

    def retrieve(self, request, pk=None):
        booking = BookingService().get(pk)
        user = request.user
        allowed = user.is_staff or booking.customer.user_id == user.pk or (
            booking.worker is not None and booking.worker.user_id == user.pk
        )
        if not allowed:
            raise AuthorizationError('Not your booking')
        return self.respond(booking)

    @action(detail=True, methods=['post'])
    def accept(self, request, pk=None):
        return self.respond(BookingService().accept_by_worker(pk, worker_for(request.user)))

    @action(detail=True, methods=['post'], permission_classes=[permissions.IsAdminUser])
    def assign(self, request, pk=None):
        serializer = AssignWorkerSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        return self.respond(BookingService().assign_by_admin(pk, serializer.validated_data['worker_id']))

    @action(detail=True, methods=['post'])
    def reject(self, request, pk=None):
        return self.respond(BookingService().reject_by_worker(pk, worker_for(request.user)))

    @action(detail=True, methods=['post'])
    def confirm(self, request, pk=None):
        return self.respond(BookingService().confirm_by_worker(pk, worker_for(request.user)))

    @action(detail=True, methods=['post'])
    def start(self, request, pk=None):
        return self.respond(BookingService().start(pk, worker_for(request.user)))

    @action(detail=True, methods=['post'])
    def cancel(self, request, pk=None):
        serializer = CancelRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        booking = BookingService().cancel(pk, customer_for(request.user), serializer.validated_data['reason'])
        return self.respond(booking)

    @action(detail=True, methods=['post'], url_path='request-completion')
    def request_completion(self, request, pk=None):
        return self.respond(BookingService().request_completion(pk, worker_for(request.user)))

    @action(detail=True, methods=['post'], url_path='verify-completion')
    def verify_completion(self, request, pk=None):
        serializer = VerifyCompletionSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        booking = BookingService().verify_completion(pk, worker_for(request.user), serializer.validated_data['otp'])
        return self.respond(booking)

    @action(detail=True, methods=['post'])
    def review(self, request, pk=None):
        serializer = ReviewRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        booking = BookingService().submit_review(
            pk, customer_for(request.user), serializer.validated_data['rating'], serializer.validated_data['review']
        )
        return self.respond(booking)

    @action(detail=True, methods=['post'], url_path='verify-payment', permission_classes=[permissions.IsAdminUser])
    def verify_payment(self, request, pk=None):
        return self.respond(BookingService().verify_payment(pk, request.data))


class JobViewSet(mixins.RetrieveModelMixin, viewsets.GenericViewSet):
    serializer_class = JobSerializer
    permission_classes = [permissions.IsAuthenticated]

    def get_queryset(self):
        user = self.request.user
        if user.is_staff:
            return Job.objects.all()
        worker = worker_for(user)
        return Job.objects.filter(Q(assigned_worker=worker) | Q(status=Job.STATUS_PENDING))

    @action(detail=False, methods=['get'])
    def pending(self, request):
        jobs = JobService().pending_for(worker_for(request.user))
        return Response(JobSerializer(jobs, many=True).data)

    @action(detail=True, methods=['post'])
    def accept(self, request, pk=None):
        return Response(JobSerializer(JobService().accept(pk, worker_for(request.user))).data)

    @action(detail=True, methods=['post'])
    def reject(self, request, pk=None):
        return Response(JobSerializer(JobService().reject(pk, worker_for(request.user))).data)

    @action(detail=True, methods=['post'])
    def start(self, request, pk=None):
        return Response(JobSerializer(JobService().start(pk, worker_for(request.user))).data)

    @action(detail=True, methods=['post'])
    def complete(self, request, pk=None):
        serializer = VerifyCompletionSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        job = JobService().complete(pk, worker_for(request.user), serializer.validated_data['otp'])
        return Response(JobSerializer(job).data)

    @action(detail=True, methods=['post'])
    def cancel(self, request, pk=None):
        return Response(JobSerializer(JobService().cancel(pk, worker_for(request.user))).data)

    @action(detail=True, methods=['post'], permission_classes=[permissions.IsAdminUser])
    def refresh(self, request, pk=None):
        return Response(JobSerializer(JobService().refresh_candidates(pk)).data)


class NotificationViewSet(mixins.ListModelMixin, viewsets.GenericViewSet):
    serializer_class = NotificationSerializer
    permission_classes = [permissions.IsAuthenticated]

    def get_queryset(self):
        return Notification.objects.filter(recipient=self.request.user, recipient_kind=kind_for(self.request))

    @action(detail=True, methods=['post'])
    def read(self, request, pk=None):
        return Response(NotificationSerializer(mark_read(pk, request.user)).data)

    @action(detail=False, methods=['post'], url_path='read-all')
    def read_all(self, request):
        return Response({'updated': mark_all_read(request.user, kind_for(request))})

    @action(detail=False, methods=['get'], url_path='unread-count')
    def unread_count(self, request):
        return Response({'count': unread_count(request.user, kind_for(request))})


class WorkerStatsView(generics.GenericAPIView):
    serializer_class = WorkerStatsSerializer

    def get(self, request, *args, **kwargs):
        worker = worker_for(request.user)
        return Response(self.get_serializer(worker).data)
