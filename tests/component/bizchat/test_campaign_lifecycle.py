"""
Component Tests for the Campaign Lifecycle

BizChatCampaignService with in-memory repositories and the real gateway
client on a scripted transport: creation, submission, caller actions and
vendor status callbacks.
"""

import asyncio
import gc
import pytest
from decimal import Decimal

import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "../../.."))

from tests.component.bizchat.mocks import VENDOR_CAMPAIGN_ID, timeout_reply
from tests.contracts.bizchat.data_contract import (
    BizChatTestDataFactory,
    CampaignCreateRequestBuilder,
    kst,
)
from microservices.bizchat_service.models import (
    CampaignStatus,
    DemographicTargeting,
    TemplateStatus,
)
from microservices.bizchat_service.protocols import (
    CampaignNotFoundError,
    CampaignValidationError,
    InsufficientBalanceError,
    InvalidTransitionError,
    SendWindowError,
    TemplateNotFoundError,
    VendorApplicationError,
    VendorTransportError,
)


CREATE = "/api/v1/cmpn/create"
UPDATE = "/api/v1/cmpn/update"
APPROVE = "/api/v1/cmpn/appr/req"
CANCEL = "/api/v1/cmpn/cancel"
STOP = "/api/v1/cmpn/stop"
ESTIMATE = "/api/v1/ats/mosu"


async def _create(service, user_id, template, now, **overrides):
    request = BizChatTestDataFactory.make_create_request(user_id, template.template_id, **overrides)
    return await service.create_campaign(request, now=now)


async def _seed(repository, status, vendor_campaign_id=VENDOR_CAMPAIGN_ID, **overrides):
    """Store a campaign (and its message) directly in a given status"""
    campaign = BizChatTestDataFactory.make_campaign(
        status=status, vendor_campaign_id=vendor_campaign_id, **overrides
    )
    await repository.save_campaign(campaign)
    await repository.save_message(BizChatTestDataFactory.make_message(campaign.campaign_id))
    return campaign


# ====================
# Creation
# ====================


class TestCreateCampaign:

    @pytest.mark.asyncio
    async def test_demographic_campaign_created_in_draft(self, service, vendor, user_id, template, now):
        campaign = await _create(service, user_id, template, now)

        assert campaign.status == CampaignStatus.DRAFT
        assert campaign.vendor_campaign_id is None
        assert campaign.filter_query == "(cust_age_cd BETWEEN 20 AND 39)"
        assert campaign.max_audience_count == 125000
        assert campaign.filter_description == "연령: 20세 ~ 39세, 성별: 여자, 추정 집주소: 서울, 경기"
        assert vendor.paths() == [ESTIMATE]

    @pytest.mark.asyncio
    async def test_message_cloned_from_template(self, service, repository, user_id, template, now):
        campaign = await _create(service, user_id, template, now)

        message = await repository.get_message(campaign.campaign_id)
        assert message.body == template.body
        assert message.urls == template.urls
        assert campaign.template_id == template.template_id

    @pytest.mark.asyncio
    async def test_estimate_receives_compiled_expression(self, service, vendor, user_id, template, now):
        await _create(service, user_id, template, now)

        expression = vendor.body(vendor.calls(ESTIMATE)[0])
        assert [c["code"] for c in expression["$and"]] == ["cust_age_cd", "sex_cd", "home_location"]

    @pytest.mark.asyncio
    async def test_category_names_resolved_before_estimate(self, service, vendor, user_id, template, now, factory):
        targeting = DemographicTargeting(
            shopping_categories=[factory.make_category(cat1="01", cat1_name=None)]
        )
        campaign = await _create(service, user_id, template, now, targeting=targeting)

        assert vendor.paths() == ["/api/v1/ats/meta/11st", ESTIMATE]
        assert campaign.targeting.shopping_categories[0].cat1_name == "가구/인테리어"
        expression = vendor.body(vendor.calls(ESTIMATE)[0])
        assert expression["$and"][0]["data"] == [{"cat1": "가구/인테리어"}]

    @pytest.mark.asyncio
    async def test_geofence_campaign_skips_estimate(self, service, vendor, user_id, template, now, factory):
        campaign = await _create(
            service, user_id, template, now, targeting=factory.make_geofence_targeting()
        )

        assert vendor.calls() == []
        assert campaign.filter_query is None
        assert campaign.filter_description == "지오펜스: 강남역 1번 출구"

    @pytest.mark.asyncio
    async def test_explicit_schedule_validated_and_aligned(self, service, user_id, template, now):
        request = (
            CampaignCreateRequestBuilder(user_id, template.template_id)
            .with_schedule(kst(2025, 3, 4, 14, 31))
            .build()
        )
        campaign = await service.create_campaign(request, now=now)
        assert campaign.scheduled_at == kst(2025, 3, 4, 14, 40)

    @pytest.mark.asyncio
    async def test_schedule_outside_hours_rejected(self, service, vendor, user_id, template, now):
        request = (
            CampaignCreateRequestBuilder(user_id, template.template_id)
            .with_schedule(kst(2025, 3, 4, 19, 0))
            .build()
        )
        with pytest.raises(SendWindowError):
            await service.create_campaign(request, now=now)
        assert vendor.calls() == []

    @pytest.mark.asyncio
    async def test_unknown_template(self, service, user_id, now):
        request = BizChatTestDataFactory.make_create_request(user_id, "tpl_missing")
        with pytest.raises(TemplateNotFoundError):
            await service.create_campaign(request, now=now)

    @pytest.mark.asyncio
    async def test_template_of_another_user(self, service, template, now):
        request = BizChatTestDataFactory.make_create_request(
            BizChatTestDataFactory.make_user_id(), template.template_id
        )
        with pytest.raises(TemplateNotFoundError):
            await service.create_campaign(request, now=now)

    @pytest.mark.asyncio
    async def test_unapproved_template(self, service, template_repository, user_id, now):
        pending = await template_repository.save_template(
            BizChatTestDataFactory.make_template(user_id=user_id, status=TemplateStatus.PENDING)
        )
        with pytest.raises(CampaignValidationError) as exc_info:
            await _create(service, user_id, pending, now)
        assert exc_info.value.field == "template_id"

    @pytest.mark.asyncio
    async def test_insufficient_balance(self, service, vendor, balance_client, user_id, template, now):
        balance_client.balance = Decimal("100")

        with pytest.raises(InsufficientBalanceError) as exc_info:
            await _create(service, user_id, template, now)

        assert exc_info.value.required == Decimal("50000")
        assert exc_info.value.available == Decimal("100")
        assert vendor.calls() == []

    @pytest.mark.asyncio
    async def test_failed_estimate_aborts_creation(self, service, repository, vendor, user_id, template, now):
        vendor.reply(ESTIMATE, {"code": "E500001", "msg": "ATS 오류"})

        with pytest.raises(VendorApplicationError):
            await _create(service, user_id, template, now)
        assert repository._campaigns == {}


# ====================
# Submission
# ====================


class TestSubmitCampaign:

    @pytest.mark.asyncio
    async def test_submit_creates_then_requests_approval(self, service, vendor, user_id, template, now):
        campaign = await _create(service, user_id, template, now)

        submitted = await service.submit_campaign(campaign.campaign_id, now=now)

        assert submitted.status == CampaignStatus.APPROVAL_REQUESTED
        assert submitted.vendor_campaign_id == VENDOR_CAMPAIGN_ID
        assert vendor.paths() == [ESTIMATE, CREATE, APPROVE]
        assert vendor.calls(APPROVE)[0].url.params["id"] == VENDOR_CAMPAIGN_ID
        assert submitted.version == campaign.version + 2

    @pytest.mark.asyncio
    async def test_create_body_carries_vendor_filter(self, service, vendor, user_id, template, now):
        campaign = await _create(service, user_id, template, now)
        await service.submit_campaign(campaign.campaign_id, now=now)

        body = vendor.body(vendor.calls(CREATE)[0])
        assert body["sndMosuQuery"] == "(cust_age_cd BETWEEN 20 AND 39)"
        assert body["sndMosu"] == 1500
        # No schedule given: earliest slot after the 1 hour lead time
        assert body["atsSndStartDate"] == int(kst(2025, 3, 4, 9, 10).timestamp())
        assert body["cb"] == {"state": "https://campaigns.example.com/api/v1/bizchat/callback/state"}

    @pytest.mark.asyncio
    async def test_create_timeout_leaves_draft_and_retry_creates_again(
        self, service, repository, vendor, user_id, template, now
    ):
        campaign = await _create(service, user_id, template, now)
        vendor.reply(CREATE, timeout_reply)

        with pytest.raises(VendorTransportError) as exc_info:
            await service.submit_campaign(campaign.campaign_id, now=now)
        assert exc_info.value.timeout is True

        stored = await repository.get_campaign(campaign.campaign_id)
        assert stored.status == CampaignStatus.DRAFT
        assert stored.vendor_campaign_id is None
        assert stored.version == campaign.version

        retried = await service.submit_campaign(campaign.campaign_id, now=now)
        assert retried.status == CampaignStatus.APPROVAL_REQUESTED
        assert vendor.paths().count(CREATE) == 2
        assert UPDATE not in vendor.paths()

    @pytest.mark.asyncio
    async def test_failed_approval_keeps_registration(self, service, repository, vendor, user_id, template, now):
        campaign = await _create(service, user_id, template, now)
        vendor.reply(APPROVE, {"code": "E200010", "msg": "승인 요청 불가"})

        with pytest.raises(VendorApplicationError):
            await service.submit_campaign(campaign.campaign_id, now=now)

        stored = await repository.get_campaign(campaign.campaign_id)
        assert stored.status == CampaignStatus.TEMP_REGISTERED
        assert stored.vendor_campaign_id == VENDOR_CAMPAIGN_ID

        resubmitted = await service.submit_campaign(campaign.campaign_id, now=now)
        assert resubmitted.status == CampaignStatus.APPROVAL_REQUESTED
        assert vendor.paths()[-2:] == [UPDATE, APPROVE]
        assert vendor.paths().count(CREATE) == 1

    @pytest.mark.asyncio
    async def test_rejected_campaign_resubmitted_with_update(self, service, repository, vendor, now):
        campaign = await _seed(repository, CampaignStatus.REJECTED)

        resubmitted = await service.submit_campaign(campaign.campaign_id, now=now)

        assert resubmitted.status == CampaignStatus.APPROVAL_REQUESTED
        assert vendor.paths() == [UPDATE, APPROVE]
        assert vendor.calls(UPDATE)[0].url.params["id"] == VENDOR_CAMPAIGN_ID

    @pytest.mark.asyncio
    async def test_update_sends_assembled_request(self, service, repository, vendor, now, monkeypatch):
        campaign = await _seed(repository, CampaignStatus.REJECTED)
        built = []
        build_update = service.assembler.build_update

        def recording_build_update(*args, **kwargs):
            request = build_update(*args, **kwargs)
            built.append(request)
            return request

        monkeypatch.setattr(service.assembler, "build_update", recording_build_update)

        await service.submit_campaign(campaign.campaign_id, now=now)

        assert len(built) == 1
        sent = vendor.calls(built[0].path)[0]
        assert sent.url.params["id"] == built[0].params["id"]
        assert vendor.body(sent) == built[0].body

    @pytest.mark.asyncio
    async def test_submit_from_approval_requested_rejected(self, service, repository, vendor, now):
        campaign = await _seed(repository, CampaignStatus.APPROVAL_REQUESTED)
        with pytest.raises(InvalidTransitionError):
            await service.submit_campaign(campaign.campaign_id, now=now)
        assert vendor.calls() == []

    @pytest.mark.asyncio
    async def test_submit_with_time_inside_lead_rejected(self, service, vendor, user_id, template, now):
        campaign = await _create(service, user_id, template, now)
        with pytest.raises(SendWindowError) as exc_info:
            await service.submit_campaign(campaign.campaign_id, scheduled_at=kst(2025, 3, 4, 9, 0), now=now)
        assert exc_info.value.constraint == "lead_time"
        assert vendor.paths() == [ESTIMATE]

    @pytest.mark.asyncio
    async def test_geofence_submit_sends_collection_window(self, service, vendor, user_id, template, now, factory):
        campaign = await _create(
            service, user_id, template, now, targeting=factory.make_geofence_targeting()
        )
        submitted = await service.submit_campaign(campaign.campaign_id, now=now)

        body = vendor.body(vendor.calls(CREATE)[0])
        assert body["rcvType"] == 2
        assert body["sndGeofenceId"] == "gf_1"
        assert body["collStartDate"] == int(kst(2025, 3, 4, 9, 10).timestamp())
        assert body["collEndDate"] == int(kst(2025, 3, 4, 10, 40).timestamp())
        assert body["collSndDate"] == int(kst(2025, 3, 4, 11, 10).timestamp())
        assert "sndMosu" not in body
        assert submitted.scheduled_at == kst(2025, 3, 4, 11, 10)

    @pytest.mark.asyncio
    async def test_unknown_campaign(self, service, now):
        with pytest.raises(CampaignNotFoundError):
            await service.submit_campaign("cmp_missing", now=now)


# ====================
# Caller actions
# ====================


class TestTransitions:

    @pytest.mark.asyncio
    async def test_register_from_draft(self, service, vendor, user_id, template, now):
        campaign = await _create(service, user_id, template, now)

        registered = await service.transition_campaign(campaign.campaign_id, "register", now=now)

        assert registered.status == CampaignStatus.TEMP_REGISTERED
        assert registered.vendor_campaign_id == VENDOR_CAMPAIGN_ID
        assert vendor.paths() == [ESTIMATE, CREATE]

    @pytest.mark.asyncio
    async def test_register_twice_rejected(self, service, vendor, user_id, template, now):
        campaign = await _create(service, user_id, template, now)
        await service.transition_campaign(campaign.campaign_id, "register", now=now)

        with pytest.raises(InvalidTransitionError) as exc_info:
            await service.transition_campaign(campaign.campaign_id, "register", now=now)
        assert exc_info.value.current_status == CampaignStatus.TEMP_REGISTERED
        assert vendor.paths().count(CREATE) == 1

    @pytest.mark.asyncio
    async def test_cancel_in_progress_rejected(self, service, repository, vendor):
        campaign = await _seed(repository, CampaignStatus.IN_PROGRESS)

        with pytest.raises(InvalidTransitionError) as exc_info:
            await service.transition_campaign(campaign.campaign_id, "cancel")

        assert exc_info.value.current_status == CampaignStatus.IN_PROGRESS
        assert exc_info.value.action == "cancel"
        assert vendor.calls() == []

    @pytest.mark.asyncio
    async def test_cancel_calls_vendor(self, service, repository, vendor):
        campaign = await _seed(repository, CampaignStatus.APPROVED)

        cancelled = await service.transition_campaign(campaign.campaign_id, "cancel")

        assert cancelled.status == CampaignStatus.CANCELLED
        assert vendor.paths() == [CANCEL]
        assert vendor.calls(CANCEL)[0].url.params["id"] == VENDOR_CAMPAIGN_ID

    @pytest.mark.asyncio
    async def test_cancel_without_vendor_id_is_local(self, service, repository, vendor):
        campaign = await _seed(repository, CampaignStatus.REJECTED, vendor_campaign_id=None)

        cancelled = await service.cancel_campaign(campaign.campaign_id)

        assert cancelled.status == CampaignStatus.CANCELLED
        assert vendor.calls() == []

    @pytest.mark.asyncio
    async def test_failed_cancel_leaves_status(self, service, repository, vendor):
        campaign = await _seed(repository, CampaignStatus.SEND_PREPARATION)
        vendor.reply(CANCEL, {"code": "E300001", "msg": "취소 불가"})

        with pytest.raises(VendorApplicationError):
            await service.cancel_campaign(campaign.campaign_id)

        stored = await repository.get_campaign(campaign.campaign_id)
        assert stored.status == CampaignStatus.SEND_PREPARATION

    @pytest.mark.asyncio
    async def test_stop_in_progress(self, service, repository, vendor):
        campaign = await _seed(repository, CampaignStatus.IN_PROGRESS)

        stopped = await service.transition_campaign(campaign.campaign_id, "STOP")

        assert stopped.status == CampaignStatus.STOPPED
        assert vendor.paths() == [STOP]

    @pytest.mark.asyncio
    async def test_stop_outside_in_progress_rejected(self, service, repository):
        campaign = await _seed(repository, CampaignStatus.APPROVED)
        with pytest.raises(InvalidTransitionError):
            await service.stop_campaign(campaign.campaign_id)

    @pytest.mark.asyncio
    async def test_unknown_action(self, service, repository):
        campaign = await _seed(repository, CampaignStatus.APPROVED)
        with pytest.raises(InvalidTransitionError) as exc_info:
            await service.transition_campaign(campaign.campaign_id, "pause")
        assert exc_info.value.action == "pause"

    @pytest.mark.asyncio
    async def test_racing_cancel_and_submit_serialized(self, service, repository, vendor, now):
        """Only one of two concurrent actions on a rejected campaign wins"""
        campaign = await _seed(repository, CampaignStatus.REJECTED)

        results = await asyncio.gather(
            service.cancel_campaign(campaign.campaign_id),
            service.submit_campaign(campaign.campaign_id, now=now),
            return_exceptions=True,
        )

        cancelled = results[0]
        assert cancelled.status == CampaignStatus.CANCELLED
        assert isinstance(results[1], InvalidTransitionError)
        assert vendor.paths() == [CANCEL]

    @pytest.mark.asyncio
    async def test_campaign_lock_released_after_action(self, service, repository):
        first = await _seed(repository, CampaignStatus.APPROVED)
        second = await _seed(repository, CampaignStatus.APPROVED, vendor_campaign_id="900000000002")

        await service.cancel_campaign(first.campaign_id)
        await service.cancel_campaign(second.campaign_id)
        gc.collect()

        assert first.campaign_id not in service._locks
        assert second.campaign_id not in service._locks


# ====================
# Vendor callbacks
# ====================


class TestVendorStatus:

    @pytest.mark.asyncio
    async def test_callback_advances_status(self, service, repository):
        campaign = await _seed(repository, CampaignStatus.APPROVAL_REQUESTED)

        updated = await service.apply_vendor_status(VENDOR_CAMPAIGN_ID, 11)

        assert updated.campaign_id == campaign.campaign_id
        assert updated.status == CampaignStatus.APPROVED

    @pytest.mark.asyncio
    async def test_callback_records_counts(self, service, repository):
        await _seed(repository, CampaignStatus.SEND_PREPARATION)

        updated = await service.apply_vendor_status(VENDOR_CAMPAIGN_ID, 30, sent_count=800, success_count=790)

        assert updated.status == CampaignStatus.IN_PROGRESS
        assert (updated.sent_count, updated.success_count) == (800, 790)

    @pytest.mark.asyncio
    async def test_callback_cancel_alias(self, service, repository):
        await _seed(repository, CampaignStatus.APPROVED)
        updated = await service.apply_vendor_status(VENDOR_CAMPAIGN_ID, 25)
        assert updated.status == CampaignStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_callback_may_skip_states(self, service, repository):
        await _seed(repository, CampaignStatus.APPROVAL_REQUESTED)
        updated = await service.apply_vendor_status(VENDOR_CAMPAIGN_ID, 30)
        assert updated.status == CampaignStatus.IN_PROGRESS

    @pytest.mark.asyncio
    async def test_final_status_not_moved(self, service, repository):
        campaign = await _seed(repository, CampaignStatus.COMPLETED)

        updated = await service.apply_vendor_status(VENDOR_CAMPAIGN_ID, 30)

        assert updated.status == CampaignStatus.COMPLETED
        assert updated.version == campaign.version

    @pytest.mark.asyncio
    async def test_unknown_vendor_campaign(self, service):
        assert await service.apply_vendor_status("000000000000", 11) is None

    @pytest.mark.asyncio
    async def test_unknown_status_code_ignored(self, service, repository):
        await _seed(repository, CampaignStatus.APPROVED)
        updated = await service.apply_vendor_status(VENDOR_CAMPAIGN_ID, 77)
        assert updated.status == CampaignStatus.APPROVED

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "current, late_code",
        [
            (CampaignStatus.IN_PROGRESS, 10),
            (CampaignStatus.IN_PROGRESS, 20),
            (CampaignStatus.APPROVED, 0),
            (CampaignStatus.APPROVED, 17),
            (CampaignStatus.SEND_PREPARATION, 11),
        ],
    )
    async def test_late_earlier_status_ignored(self, service, repository, current, late_code):
        campaign = await _seed(repository, current)

        updated = await service.apply_vendor_status(VENDOR_CAMPAIGN_ID, late_code)

        assert updated.status == current
        assert updated.version == campaign.version

    @pytest.mark.asyncio
    async def test_in_progress_stays_stoppable_after_late_status(self, service, repository, vendor):
        campaign = await _seed(repository, CampaignStatus.IN_PROGRESS)
        await service.apply_vendor_status(VENDOR_CAMPAIGN_ID, 10)

        with pytest.raises(InvalidTransitionError):
            await service.transition_campaign(campaign.campaign_id, "cancel")

        stopped = await service.transition_campaign(campaign.campaign_id, "stop")
        assert stopped.status == CampaignStatus.STOPPED
        assert vendor.paths() == [STOP]

    @pytest.mark.asyncio
    async def test_rejected_campaign_follows_vendor_resubmission(self, service, repository):
        await _seed(repository, CampaignStatus.REJECTED)
        updated = await service.apply_vendor_status(VENDOR_CAMPAIGN_ID, 0)
        assert updated.status == CampaignStatus.TEMP_REGISTERED
