import pytest

from billing.correlation import (
    CorrelationResolver,
    decode_correlation_token,
    encode_correlation_token,
    parse_correlation_token,
)
from billing.errors import InvalidCorrelationToken
from billing.models import PaymentOutcome
from billing.plans import normalize_plan


def _outcome(token=None, *, metadata=None, email=None, payer_email=None) -> PaymentOutcome:
    return PaymentOutcome(
        payment_id="1001",
        status="approved",
        via="payment_lookup",
        correlation_token=token,
        email=email,
        payer_email=payer_email,
        metadata=metadata or {},
    )


def test_encode_normalizes_email_and_plan():
    token = encode_correlation_token(email="  Owner@Example.COM ", plan="Profesional")
    assert token == "owner@example.com|pro|web"


def test_encode_rejects_missing_email():
    with pytest.raises(InvalidCorrelationToken):
        encode_correlation_token(email="not-an-email", plan="pro")


def test_encode_keeps_separator_out_of_channel():
    token = encode_correlation_token(email="a@b.com", plan="premium", channel="ad|campaign")
    assert token == "a@b.com|premium|ad-campaign"


def test_decode_pipe_token():
    token = decode_correlation_token("a@b.com|premium|web")
    assert (token.email, token.plan, token.channel) == ("a@b.com", "premium", "web")
    assert token.is_complete


def test_decode_marks_invalid_fields_as_none():
    token = decode_correlation_token("a@b.com|unknown|web")
    assert token.email == "a@b.com"
    assert token.plan is None
    assert not token.is_complete


def test_decode_ignores_extra_fields():
    token = decode_correlation_token("a@b.com|pro|web|extra|fields")
    assert (token.email, token.plan, token.channel) == ("a@b.com", "pro", "web")


def test_decode_legacy_query_string():
    token = decode_correlation_token("email=a%40b.com&plan=basico&tag=landing")
    assert (token.email, token.plan, token.channel) == ("a@b.com", "basic", "landing")


def test_decode_duration_hints():
    assert decode_correlation_token("a@b.com|pro|web|30").duration_days == 30
    assert decode_correlation_token("a@b.com|pro|web").duration_days is None
    assert decode_correlation_token("a@b.com|pro|web|-5").duration_days is None
    assert decode_correlation_token("email=a%40b.com&plan=pro&duration_days=45").duration_days == 45
    assert decode_correlation_token("email=a%40b.com&plan=pro&years=1").duration_days == 365
    assert decode_correlation_token("email=a%40b.com&plan=pro&months=3").duration_days == 90


def test_decode_empty_and_garbage():
    assert not decode_correlation_token(None).is_complete
    assert not decode_correlation_token("order-12345").is_complete


def test_parse_is_strict():
    with pytest.raises(InvalidCorrelationToken) as exc_info:
        parse_correlation_token("a@b.com|gold|web")
    assert exc_info.value.token == "a@b.com|gold|web"


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("premium", "premium"),
        (" PRO ", "pro"),
        ("básico", "basic"),
        ("gratuito", "free"),
        ("gold", None),
        ("", None),
        (None, None),
    ],
)
def test_normalize_plan(raw, expected):
    assert normalize_plan(raw) == expected


def test_resolver_complete_token_wins_over_metadata():
    identity = CorrelationResolver().resolve(
        _outcome("a@b.com|premium|web", metadata={"email": "other@b.com", "plan": "pro"})
    )
    assert identity.email == "a@b.com"
    assert identity.plan == "premium"
    assert (identity.email_source, identity.plan_source) == ("token", "token")


def test_resolver_invalid_plan_falls_back_to_metadata():
    identity = CorrelationResolver().resolve(_outcome("a@b.com|unknown|web", metadata={"plan_type": "pro"}))
    assert identity.email == "a@b.com"
    assert identity.plan == "pro"
    assert identity.plan_source == "metadata"


def test_resolver_invalid_plan_without_metadata_defaults_to_premium():
    identity = CorrelationResolver().resolve(_outcome("a@b.com|unknown|web"))
    assert identity.email == "a@b.com"
    assert identity.plan == "premium"
    assert identity.plan_source == "default"


def test_resolver_uses_metadata_email_then_payer():
    resolver = CorrelationResolver()

    from_metadata = resolver.resolve(
        _outcome(None, metadata={"email_for_backoffice": "Back@Office.mx"}, payer_email="payer@b.com")
    )
    assert from_metadata.email == "back@office.mx"
    assert from_metadata.email_source == "metadata"

    from_payer = resolver.resolve(_outcome("garbage", payer_email="payer@b.com"))
    assert from_payer.email == "payer@b.com"
    assert from_payer.email_source == "payer"


def test_resolver_inline_email():
    identity = CorrelationResolver().resolve(_outcome(None, email="inline@b.com"))
    assert identity.email == "inline@b.com"
    assert identity.email_source == "inline"


def test_resolver_without_any_email():
    identity = CorrelationResolver().resolve(_outcome("|pro|web"))
    assert identity.email is None
    assert identity.plan == "pro"
