import pytest

from signing_engine.core.errors import NotFoundError
from signing_engine.models.envelope import EnvelopeRecipient, RecipientRole, RecipientStatus, SigningMode
from signing_engine.services.status_report import build_status_report

from conftest import TEAM_ID


async def _sign(service, token):
    return await service.record_signer_completion(token, ip_address="203.0.113.7", esign_consent=True)


class TestGetSigningStatus:
    @pytest.mark.asyncio
    async def test_parallel_reports_every_signer_as_current(self, signing_service, make_envelope):
        envelope = await make_envelope(SigningMode.PARALLEL, [3, 1, 2], cc=1)
        await _sign(signing_service, envelope.signer_tokens[1])

        report = await signing_service.get_signing_status(envelope.id)

        assert report.mode is SigningMode.PARALLEL
        assert report.total_signers == 3
        assert report.signed_count == 1
        assert report.is_complete is False
        assert [member.order for member in report.current_group] == [1, 2, 3]
        assert report.waiting_groups == []

    @pytest.mark.asyncio
    async def test_sequential_reports_current_and_waiting_groups(self, signing_service, make_envelope):
        envelope = await make_envelope(SigningMode.SEQUENTIAL, [1, 2, 2, 3])
        await _sign(signing_service, envelope.signer_tokens[0])

        report = await signing_service.get_signing_status(envelope.id, team_id=TEAM_ID)

        assert report.signed_count == 1
        assert {member.email for member in report.current_group} == {"signer2@example.com", "signer3@example.com"}
        assert all(member.status is RecipientStatus.SENT for member in report.current_group)
        assert [group.order for group in report.waiting_groups] == [3]
        assert [member.email for member in report.waiting_groups[0].recipients] == ["signer4@example.com"]

    @pytest.mark.asyncio
    async def test_completed_envelope_has_no_current_group(self, signing_service, make_envelope):
        envelope = await make_envelope(SigningMode.MIXED, [1, 2])
        for token in envelope.signer_tokens:
            await _sign(signing_service, token)

        report = await signing_service.get_signing_status(envelope.id)

        assert report.is_complete is True
        assert report.signed_count == report.total_signers == 2
        assert report.current_group == []
        assert report.waiting_groups == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("envelope_id, team_id", [("missing-envelope", None), (None, "team-other")])
    async def test_unknown_or_foreign_envelope_is_not_found(
        self, signing_service, make_envelope, envelope_id, team_id
    ):
        envelope = await make_envelope(SigningMode.PARALLEL, [1])

        with pytest.raises(NotFoundError):
            await signing_service.get_signing_status(envelope_id or envelope.id, team_id=team_id)


class TestBuildStatusReport:
    def test_envelope_without_signers_counts_as_complete(self):
        observer = EnvelopeRecipient(
            email="copy@example.com",
            name="Copy",
            role=RecipientRole.CC,
            order=1,
            status=RecipientStatus.SENT,
            signing_token="cc-token",
        )

        report = build_status_report(SigningMode.SEQUENTIAL, [observer])

        assert report.total_signers == 0
        assert report.is_complete is True
        assert report.current_group == []
