"""
Views for the refunds API.

ViewSets:
    RefundViewSet: Ledger records, refund initiation, Sync, cancellation, stats
    RefundWorkflowViewSet: Session-backed four-step refund workflow

Views:
    TransactionLookupView: Ad-hoc gateway transaction lookup

Endpoints (prefixed with /api/v1/refunds/):
    GET  /                  - List refund records (filtered, paginated)
    POST /                  - Initiate a refund
    GET  /{id}/             - Get one refund record
    POST /{id}/sync/        - Re-poll the gateway for a refund
    POST /{id}/cancel/      - Cancel an attempt never acknowledged
    GET  /stats/            - Ledger statistics
    POST /lookup/           - Look up a gateway transaction
    GET  /workflow/         - Current workflow state
    POST /workflow/gateway/ - Step 1: select gateway
    POST /workflow/lookup/  - Step 2: look up transaction
    POST /workflow/confirm/ - Steps 3-4: initiate refund
    POST /workflow/reset/   - Start over

All endpoints are restricted to staff users.
"""

from __future__ import annotations

from rest_framework import status, viewsets
from rest_framework.decorators import action
from rest_framework.permissions import IsAdminUser
from rest_framework.response import Response
from rest_framework.views import APIView

from drf_spectacular.utils import (
    OpenApiParameter,
    OpenApiResponse,
    extend_schema,
    extend_schema_view,
)

from core.exceptions import BaseApplicationError
from core.services import ServiceResult

from refunds.serializers import (
    CancelRequestSerializer,
    LookupRequestSerializer,
    LookupResultSerializer,
    RefundInitiateSerializer,
    RefundListQuerySerializer,
    RefundListResponseSerializer,
    RefundRecordSerializer,
    RefundResultSerializer,
    RefundStatsSerializer,
    WorkflowConfirmSerializer,
    WorkflowGatewaySerializer,
    WorkflowLookupSerializer,
    WorkflowStateSerializer,
)
from refunds.services import RefundLedgerService, RefundReconciliationService
from refunds.workflow import RefundWorkflow

# HTTP status per error code; anything unlisted is a 400
ERROR_STATUS_CODES = {
    "NOT_FOUND": status.HTTP_404_NOT_FOUND,
    "RefundNotFound": status.HTTP_404_NOT_FOUND,
    "NotFoundAtGateway": status.HTTP_404_NOT_FOUND,
    "CONFLICT": status.HTTP_409_CONFLICT,
    "OverRefund": status.HTTP_409_CONFLICT,
    "IllegalTransition": status.HTTP_409_CONFLICT,
    "RefundInFlight": status.HTTP_409_CONFLICT,
    "LockAcquisition": status.HTTP_409_CONFLICT,
    "StaleRecord": status.HTTP_409_CONFLICT,
    "RefundNotAllowed": status.HTTP_422_UNPROCESSABLE_ENTITY,
    "UnitMismatch": status.HTTP_422_UNPROCESSABLE_ENTITY,
    "GatewayRejected": status.HTTP_502_BAD_GATEWAY,
    "GatewayCancelled": status.HTTP_502_BAD_GATEWAY,
    "GatewayUnavailable": status.HTTP_503_SERVICE_UNAVAILABLE,
    "GatewayConfiguration": status.HTTP_503_SERVICE_UNAVAILABLE,
}


def status_for_error(error_code: str | None) -> int:
    return ERROR_STATUS_CODES.get(error_code or "", status.HTTP_400_BAD_REQUEST)


def error_response(result: ServiceResult) -> Response:
    """Render a failed ServiceResult, keeping any attempt data it carries."""
    body = result.to_response()
    if isinstance(result.data, dict):
        body.update({k: v for k, v in result.data.items() if k not in body})
    return Response(body, status=status_for_error(result.error_code))


def exception_response(exc: BaseApplicationError) -> Response:
    return Response(
        {"success": False, "error": exc.message, "error_code": exc.error_code},
        status=status_for_error(exc.error_code),
    )


def get_actor(request) -> str:
    """Audit identifier for the requesting operator."""
    user = request.user
    return getattr(user, "email", "") or user.get_username()


@extend_schema_view(
    list=extend_schema(
        operation_id="list_refunds",
        summary="List refund records",
        description="Filtered, newest-first page of refund records with total count.",
        parameters=[RefundListQuerySerializer],
        responses={200: RefundListResponseSerializer},
        tags=["Refunds"],
    ),
    retrieve=extend_schema(
        operation_id="get_refund",
        summary="Get refund record",
        responses={
            200: RefundRecordSerializer,
            404: OpenApiResponse(description="Refund not found"),
        },
        tags=["Refunds"],
    ),
    create=extend_schema(
        operation_id="initiate_refund",
        summary="Initiate a refund",
        description=(
            "Look up the transaction, check eligibility and cumulative amounts, "
            "and refund it at the gateway. Every attempt that reaches the "
            "gateway is recorded, including failures."
        ),
        request=RefundInitiateSerializer,
        responses={
            201: RefundResultSerializer,
            404: OpenApiResponse(description="Transaction not found at gateway"),
            409: OpenApiResponse(description="Over-refund or refund in flight"),
            422: OpenApiResponse(description="Transaction not refundable or bad amount"),
            502: OpenApiResponse(description="Gateway rejected the refund"),
            503: OpenApiResponse(description="Gateway unavailable"),
        },
        tags=["Refunds"],
    ),
)
class RefundViewSet(viewsets.ViewSet):
    """
    ViewSet for the refund ledger.

    Provides:
    - list: GET / - Filtered listing
    - create: POST / - Initiate a refund
    - retrieve: GET /{id}/ - Single record
    - sync: POST /{id}/sync/ - Correct status drift from the gateway
    - cancel: POST /{id}/cancel/ - Abandon an unacknowledged attempt
    - stats: GET /stats/ - Counts and per-currency totals
    """

    permission_classes = [IsAdminUser]
    lookup_value_regex = "[0-9a-fA-F-]{36}"

    def list(self, request):
        query = RefundListQuerySerializer(data=request.query_params)
        query.is_valid(raise_exception=True)
        params = dict(query.validated_data)
        page = params.pop("page")
        page_size = params.pop("page_size")

        records, total = RefundLedgerService.list_filtered(params, page=page, page_size=page_size)
        return Response(
            {
                "records": RefundRecordSerializer(records, many=True).data,
                "totalCount": total,
                "page": page,
                "pageSize": page_size,
            }
        )

    def create(self, request):
        serializer = RefundInitiateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        result = RefundReconciliationService.process_refund(
            gateway=data["gateway"],
            transaction_ref=data["transaction_ref"],
            actor=get_actor(request),
            reason=data["reason"],
            amount_minor_units=data.get("amount_minor_units"),
            amount=data.get("amount"),
            admin_notes=data["admin_notes"],
        )
        if not result.success:
            return error_response(result)
        return Response(result.data, status=status.HTTP_201_CREATED)

    def retrieve(self, request, pk=None):
        try:
            record = RefundLedgerService.get_record(pk)
        except BaseApplicationError as e:
            return exception_response(e)
        return Response(RefundRecordSerializer(record).data)

    @extend_schema(
        operation_id="sync_refund",
        summary="Sync refund status",
        description=(
            "Re-poll the gateway for this refund and move it to a terminal "
            "state if the gateway has resolved it. Idempotent; a no-op for "
            "terminal records."
        ),
        request=None,
        responses={
            200: RefundRecordSerializer,
            404: OpenApiResponse(description="Refund not found"),
            503: OpenApiResponse(description="Gateway unavailable"),
        },
        tags=["Refunds"],
    )
    @action(detail=True, methods=["post"])
    def sync(self, request, pk=None):
        result = RefundReconciliationService.sync_status(pk)
        if not result.success:
            return error_response(result)
        return Response(RefundRecordSerializer(result.data).data)

    @extend_schema(
        operation_id="cancel_refund",
        summary="Cancel refund attempt",
        description="Cancel an attempt the gateway never acknowledged (status initiated).",
        request=CancelRequestSerializer,
        responses={
            200: RefundRecordSerializer,
            404: OpenApiResponse(description="Refund not found"),
            409: OpenApiResponse(description="Refund is no longer cancellable"),
        },
        tags=["Refunds"],
    )
    @action(detail=True, methods=["post"])
    def cancel(self, request, pk=None):
        serializer = CancelRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = RefundLedgerService.cancel(
            pk,
            actor=get_actor(request),
            note=serializer.validated_data["note"],
        )
        if not result.success:
            return error_response(result)
        return Response(RefundRecordSerializer(result.data).data)

    @extend_schema(
        operation_id="refund_stats",
        summary="Refund statistics",
        description="Counts per status and amount totals per currency (minor units).",
        parameters=[
            OpenApiParameter(name="status", type=str, location=OpenApiParameter.QUERY, required=False),
            OpenApiParameter(name="gateway", type=str, location=OpenApiParameter.QUERY, required=False),
            OpenApiParameter(name="search", type=str, location=OpenApiParameter.QUERY, required=False),
        ],
        responses={200: RefundStatsSerializer},
        tags=["Refunds"],
    )
    @action(detail=False, methods=["get"])
    def stats(self, request):
        query = RefundListQuerySerializer(data=request.query_params)
        query.is_valid(raise_exception=True)
        params = dict(query.validated_data)
        params.pop("page", None)
        params.pop("page_size", None)

        return Response(RefundStatsSerializer(RefundLedgerService.stats(params)).data)


class TransactionLookupView(APIView):
    """Look up a gateway transaction without creating anything."""

    permission_classes = [IsAdminUser]

    @extend_schema(
        operation_id="lookup_transaction",
        summary="Look up transaction",
        description=(
            "Look up a transaction at the gateway and in the local payment "
            "records. NOT_FOUND and NOT_IN_GATEWAY are reported in the body "
            "with status 200."
        ),
        request=LookupRequestSerializer,
        responses={
            200: LookupResultSerializer,
            503: OpenApiResponse(description="Gateway unavailable"),
        },
        tags=["Refunds"],
    )
    def post(self, request):
        serializer = LookupRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = RefundReconciliationService.lookup(
            serializer.validated_data["gateway"],
            serializer.validated_data["transaction_ref"],
        )
        if not result.success:
            return error_response(result)
        return Response(result.data.to_dict())


@extend_schema_view(
    list=extend_schema(
        operation_id="get_refund_workflow",
        summary="Get workflow state",
        responses={200: WorkflowStateSerializer},
        tags=["Refunds - Workflow"],
    ),
)
class RefundWorkflowViewSet(viewsets.ViewSet):
    """
    ViewSet for the four-step refund workflow held in the session.

    Provides:
    - list: GET / - Current state
    - gateway: POST /gateway/ - Select gateway
    - lookup: POST /lookup/ - Look up the transaction
    - confirm: POST /confirm/ - Initiate the refund
    - reset: POST /reset/ - Start over
    """

    permission_classes = [IsAdminUser]

    def _state(self, workflow: RefundWorkflow, http_status: int = status.HTTP_200_OK) -> Response:
        return Response(WorkflowStateSerializer(workflow.to_dict()).data, status=http_status)

    def list(self, request):
        return self._state(RefundWorkflow.load(request.session))

    @extend_schema(
        operation_id="workflow_select_gateway",
        summary="Select gateway",
        request=WorkflowGatewaySerializer,
        responses={200: WorkflowStateSerializer},
        tags=["Refunds - Workflow"],
    )
    @action(detail=False, methods=["post"])
    def gateway(self, request):
        serializer = WorkflowGatewaySerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        workflow = RefundWorkflow.load(request.session)
        workflow.select_gateway(serializer.validated_data["gateway"])
        return self._state(workflow)

    @extend_schema(
        operation_id="workflow_lookup",
        summary="Look up transaction",
        request=WorkflowLookupSerializer,
        responses={
            200: WorkflowStateSerializer,
            400: OpenApiResponse(description="Gateway not selected yet"),
            503: OpenApiResponse(description="Gateway unavailable"),
        },
        tags=["Refunds - Workflow"],
    )
    @action(detail=False, methods=["post"])
    def lookup(self, request):
        serializer = WorkflowLookupSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        workflow = RefundWorkflow.load(request.session)
        try:
            result = workflow.lookup_transaction(serializer.validated_data["transaction_ref"])
        except BaseApplicationError as e:
            return exception_response(e)
        if not result.success:
            return error_response(result)
        return self._state(workflow)

    @extend_schema(
        operation_id="workflow_confirm",
        summary="Confirm and initiate refund",
        request=WorkflowConfirmSerializer,
        responses={
            200: WorkflowStateSerializer,
            409: OpenApiResponse(description="Refund already in flight from this session"),
        },
        tags=["Refunds - Workflow"],
    )
    @action(detail=False, methods=["post"])
    def confirm(self, request):
        serializer = WorkflowConfirmSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        workflow = RefundWorkflow.load(request.session)
        try:
            workflow.confirm(
                actor=get_actor(request),
                reason=data["reason"],
                amount_minor_units=data.get("amount_minor_units"),
                amount=data.get("amount"),
                admin_notes=data["admin_notes"],
            )
        except BaseApplicationError as e:
            return exception_response(e)
        # The outcome, failed or not, is part of the workflow state
        return self._state(workflow)

    @extend_schema(
        operation_id="workflow_reset",
        summary="Reset workflow",
        request=None,
        responses={200: WorkflowStateSerializer},
        tags=["Refunds - Workflow"],
    )
    @action(detail=False, methods=["post"])
    def reset(self, request):
        workflow = RefundWorkflow.load(request.session)
        workflow.reset()
        return self._state(workflow)
