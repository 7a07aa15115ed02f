"""
DRF views for the billing operator API.

Support and operations staff use these endpoints to inspect and repair a
subscriber's billing state without waiting for webhooks or the hourly
sweep. Every endpoint requires a staff user.

Endpoints:
    GET  /api/v1/billing/subscribers/{id}/ - Billing state and description
    POST /api/v1/billing/subscribers/{id}/sync/ - Force sync
    GET  /api/v1/billing/subscribers/{id}/validate/ - Validate and repair
    POST /api/v1/billing/subscribers/{id}/cancel/ - Cancel (disables on Paystack)
    POST /api/v1/billing/subscribers/{id}/reactivate/ - Start a fresh period
    GET  /api/v1/billing/stats/ - Subscription statistics
    POST /api/v1/billing/maintenance/run/ - Run a maintenance sweep now

Errors:
    404: Unknown subscriber
    409: Operation precondition failed (ALREADY_ACTIVE, NOT_CANCELLABLE),
         state transition not allowed, or repeated version conflicts
"""

from __future__ import annotations

import logging

from drf_spectacular.utils import OpenApiResponse, extend_schema
from rest_framework import status
from rest_framework.permissions import IsAdminUser
from rest_framework.response import Response
from rest_framework.views import APIView

from core.exceptions import BaseApplicationError, ConflictError, NotFoundError

from billing.lifecycle import LifecycleManager
from billing.maintenance import MaintenanceScheduler, subscription_stats
from billing.serializers import (
    ErrorSerializer,
    MaintenanceReportSerializer,
    ReactivateSerializer,
    SubscriberSerializer,
    SubscriptionStatsSerializer,
    TransitionSerializer,
    ValidationReportSerializer,
)

logger = logging.getLogger(__name__)


class BillingOperatorView(APIView):
    """
    Base class for operator endpoints.

    Translates application errors raised by the lifecycle manager into
    JSON responses with the matching status code.
    """

    permission_classes = [IsAdminUser]

    def get_lifecycle(self) -> LifecycleManager:
        return LifecycleManager()

    def handle_exception(self, exc):
        if isinstance(exc, BaseApplicationError):
            if isinstance(exc, NotFoundError):
                status_code = status.HTTP_404_NOT_FOUND
            elif isinstance(exc, ConflictError):
                status_code = status.HTTP_409_CONFLICT
            else:
                status_code = status.HTTP_400_BAD_REQUEST
            logger.info(
                f"Operator request failed: {exc.message}",
                extra={"error_code": exc.error_code, "path": self.request.path},
            )
            return Response(exc.to_dict(), status=status_code)
        return super().handle_exception(exc)

    @staticmethod
    def transition_response(result) -> Response:
        """200 with the transition, or 409 with the precondition failure."""
        if not result:
            return Response(result.to_response(), status=status.HTTP_409_CONFLICT)
        return Response(TransitionSerializer(result.data).data)


class SubscriberDetailView(BillingOperatorView):
    """
    Get a subscriber's billing state.

    GET /api/v1/billing/subscribers/{id}/
    """

    @extend_schema(
        operation_id="get_billing_subscriber",
        summary="Get subscriber billing state",
        responses={200: SubscriberSerializer, 404: ErrorSerializer},
        tags=["Billing - Subscribers"],
    )
    def get(self, request, subscriber_id):
        subscriber = self.get_lifecycle().store.require(subscriber_id)
        return Response(SubscriberSerializer(subscriber).data)


class SubscriberSyncView(BillingOperatorView):
    """
    Force a sync of plan_type against status and expiry.

    POST /api/v1/billing/subscribers/{id}/sync/
    """

    @extend_schema(
        operation_id="sync_billing_subscriber",
        summary="Force sync",
        request=None,
        responses={200: TransitionSerializer, 404: ErrorSerializer},
        tags=["Billing - Subscribers"],
    )
    def post(self, request, subscriber_id):
        result = self.get_lifecycle().sync(subscriber_id)
        return self.transition_response(result)


class SubscriberValidateView(BillingOperatorView):
    """
    Validate and repair a subscriber.

    GET /api/v1/billing/subscribers/{id}/validate/

    Repairs what sync can repair and reports what needs manual attention.
    """

    @extend_schema(
        operation_id="validate_billing_subscriber",
        summary="Validate and repair",
        responses={200: ValidationReportSerializer, 404: ErrorSerializer},
        tags=["Billing - Subscribers"],
    )
    def get(self, request, subscriber_id):
        result = self.get_lifecycle().validate_and_repair(subscriber_id)
        return Response(ValidationReportSerializer(result.data.to_dict()).data)


class SubscriberCancelView(BillingOperatorView):
    """
    Cancel a subscription on behalf of the subscriber.

    POST /api/v1/billing/subscribers/{id}/cancel/

    Disables the Paystack subscription (best effort) and keeps pro until
    the end of the paid period.
    """

    @extend_schema(
        operation_id="cancel_billing_subscriber",
        summary="Cancel subscription",
        request=None,
        responses={
            200: TransitionSerializer,
            404: ErrorSerializer,
            409: OpenApiResponse(
                response=ErrorSerializer,
                description="Subscription is not an active Pro subscription",
            ),
        },
        tags=["Billing - Subscribers"],
    )
    def post(self, request, subscriber_id):
        result = self.get_lifecycle().cancel(subscriber_id, disable_remote=True)
        return self.transition_response(result)


class SubscriberReactivateView(BillingOperatorView):
    """
    Start a fresh billing period.

    POST /api/v1/billing/subscribers/{id}/reactivate/
    """

    @extend_schema(
        operation_id="reactivate_billing_subscriber",
        summary="Reactivate subscription",
        request=ReactivateSerializer,
        responses={
            200: TransitionSerializer,
            400: OpenApiResponse(description="Invalid billing cycle"),
            404: ErrorSerializer,
            409: OpenApiResponse(
                response=ErrorSerializer,
                description="Subscription is already active",
            ),
        },
        tags=["Billing - Subscribers"],
    )
    def post(self, request, subscriber_id):
        serializer = ReactivateSerializer(data=request.data)
        if not serializer.is_valid():
            return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

        result = self.get_lifecycle().reactivate(
            subscriber_id, cycle=serializer.validated_data["billing_cycle"]
        )
        return self.transition_response(result)


class SubscriptionStatsView(BillingOperatorView):
    """
    Subscription statistics.

    GET /api/v1/billing/stats/
    """

    @extend_schema(
        operation_id="get_billing_stats",
        summary="Subscription statistics",
        responses={200: SubscriptionStatsSerializer},
        tags=["Billing - Operations"],
    )
    def get(self, request):
        stats = subscription_stats(self.get_lifecycle())
        return Response(SubscriptionStatsSerializer(stats).data)


class MaintenanceRunView(BillingOperatorView):
    """
    Run a maintenance sweep synchronously.

    POST /api/v1/billing/maintenance/run/

    Unlike the scheduled task this does not take the sweep lock; sync is
    idempotent, so an overlapping run only repeats no-op work.
    """

    @extend_schema(
        operation_id="run_billing_maintenance",
        summary="Run maintenance sweep",
        request=None,
        responses={200: MaintenanceReportSerializer},
        tags=["Billing - Operations"],
    )
    def post(self, request):
        report = MaintenanceScheduler(self.get_lifecycle()).run()
        logger.info(
            "Maintenance sweep run by operator",
            extra={"user_id": request.user.pk, "total_updated": report.total_updated},
        )
        return Response(report.to_dict())
