"""Tests for eks_orchestrator.aws.context: AWS context, identity, region/profile resolution."""

from __future__ import annotations

from unittest.mock import MagicMock, call, patch

import pytest
from botocore.exceptions import ClientError

from eks_orchestrator.aws.context import (
    AWSContext,
    _extract_username,
    resolve_profile,
    resolve_region,
    write_env_file,
)


@pytest.fixture
def clean_env(monkeypatch):
    for name in ("CDK_DEFAULT_REGION", "AWS_DEFAULT_REGION", "AWS_REGION", "AWS_PROFILE"):
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


# ── resolve_region ───────────────────────────────────────────────────


class TestResolveRegion:
    def test_explicit(self, clean_env):
        clean_env.setenv("AWS_DEFAULT_REGION", "eu-central-1")
        assert resolve_region("us-west-2") == "us-west-2"

    def test_cdk_default_region_first(self, clean_env):
        clean_env.setenv("CDK_DEFAULT_REGION", "ca-central-1")
        clean_env.setenv("AWS_DEFAULT_REGION", "eu-central-1")
        assert resolve_region() == "ca-central-1"

    def test_from_aws_default_region(self, clean_env):
        clean_env.setenv("AWS_DEFAULT_REGION", "eu-central-1")
        assert resolve_region() == "eu-central-1"

    def test_from_aws_region(self, clean_env):
        clean_env.setenv("AWS_REGION", "ap-southeast-1")
        assert resolve_region() == "ap-southeast-1"

    def test_profile_configured_region(self, clean_env):
        assert resolve_region(configured="eu-north-1") == "eu-north-1"

    def test_fallback_default(self, clean_env):
        assert resolve_region() == "us-east-1"


# ── resolve_profile ──────────────────────────────────────────────────


class TestResolveProfile:
    def test_explicit_profile(self):
        assert resolve_profile("my-profile") == "my-profile"

    def test_from_env(self, clean_env):
        clean_env.setenv("AWS_PROFILE", "env-profile")
        assert resolve_profile() == "env-profile"

    def test_explicit_overrides_env(self, clean_env):
        clean_env.setenv("AWS_PROFILE", "env-profile")
        assert resolve_profile("explicit") == "explicit"

    def test_default_chain(self, clean_env):
        assert resolve_profile() is None


# ── _extract_username ────────────────────────────────────────────────


class TestExtractUsername:
    def test_iam_user(self):
        assert _extract_username("arn:aws:iam::123456789012:user/alice") == "alice"

    def test_assumed_role(self):
        arn = "arn:aws:sts::123456789012:assumed-role/MyRole/session-name"
        assert _extract_username(arn) == "session-name"

    def test_root(self):
        assert _extract_username("arn:aws:iam::123456789012:root") == "root"


# ── AWSContext.build ─────────────────────────────────────────────────


def _mock_session(mock_session_cls, identity=None, region_name=None):
    mock_session = MagicMock()
    mock_session.region_name = region_name
    mock_session_cls.return_value = mock_session
    mock_sts = MagicMock()
    mock_session.client.return_value = mock_sts
    if identity is not None:
        mock_sts.get_caller_identity.return_value = identity
    return mock_session, mock_sts


class TestAWSContextBuild:
    """Tests use mocked boto3 to avoid real AWS calls."""

    @patch("eks_orchestrator.aws.context.boto3.Session")
    def test_build_success(self, mock_session_cls, clean_env):
        _mock_session(mock_session_cls, {
            "Account": "123456789012",
            "Arn": "arn:aws:iam::123456789012:user/alice",
            "UserId": "AIDAEXAMPLE",
        })

        ctx = AWSContext.build(region="us-west-2", profile="test-profile")

        assert ctx.profile == "test-profile"
        assert ctx.region == "us-west-2"
        assert ctx.account_id == "123456789012"
        assert ctx.caller_arn == "arn:aws:iam::123456789012:user/alice"
        assert ctx.iam_username == "alice"
        assert mock_session_cls.call_args_list[-1] == call(
            profile_name="test-profile", region_name="us-west-2",
        )

    @patch("eks_orchestrator.aws.context.boto3.Session")
    def test_region_from_profile(self, mock_session_cls, clean_env):
        _mock_session(mock_session_cls, {
            "Account": "987654321098",
            "Arn": "arn:aws:sts::987654321098:assumed-role/AdminRole/sess",
        }, region_name="eu-west-1")

        ctx = AWSContext.build(profile="role-profile")

        assert ctx.account_id == "987654321098"
        assert ctx.iam_username == "sess"
        assert ctx.region == "eu-west-1"

    @patch("eks_orchestrator.aws.context.boto3.Session")
    def test_invalid_credentials(self, mock_session_cls, clean_env):
        _, sts = _mock_session(mock_session_cls)
        sts.get_caller_identity.side_effect = ClientError(
            {"Error": {"Code": "InvalidClientTokenId", "Message": "bad token"}},
            "GetCallerIdentity",
        )
        with pytest.raises(RuntimeError, match="credentials invalid"):
            AWSContext.build(region="us-east-1")

    @patch("eks_orchestrator.aws.context.boto3.Session")
    def test_client_uses_cached_session(self, mock_session_cls):
        ctx = AWSContext(profile=None, region="us-east-1")
        ctx.client("eks")
        ctx.client("ec2")
        mock_session_cls.assert_called_once_with(profile_name=None, region_name="us-east-1")


# ── write_env_file ───────────────────────────────────────────────────


class TestWriteEnvFile:
    def test_contents(self, tmp_path):
        path = write_env_file(tmp_path / ".env", "123456789012", "us-west-2")
        text = path.read_text()
        assert "CDK_DEFAULT_ACCOUNT=123456789012" in text
        assert "CDK_DEFAULT_REGION=us-west-2" in text
        assert "AWS_DEFAULT_REGION=us-west-2" in text
