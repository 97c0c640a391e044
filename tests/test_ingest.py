import pytest

from territory_ingest import (
    TerritoryPayloadError,
    decode_body,
    decode_form_body,
    parse_territory_payload,
)

RAW_JSON = '{"bases":[{"name":"Alpha","x":100,"z":200}]}'


def test_mangled_form_payload_matches_direct_json() -> None:
    mangled = {'{"bases":': {'{"name":"Alpha","x":100,"z":200}': ""}}

    rebuilt = parse_territory_payload(mangled)
    direct = parse_territory_payload({"bases": [{"name": "Alpha", "x": 100, "z": 200}]})

    assert rebuilt == direct
    assert len(rebuilt.bases) == 1
    assert rebuilt.bases[0].name == "Alpha"
    assert (rebuilt.bases[0].x, rebuilt.bases[0].z) == (100, 200)


def test_form_decoding_produces_the_mangled_shape() -> None:
    decoded = decode_form_body(RAW_JSON)
    assert decoded == {'{"bases":': {'{"name":"Alpha","x":100,"z":200}': ""}}


def test_form_encoded_body_with_several_bases() -> None:
    raw = (
        '{"bases":[{"name":"Alpha","x":100,"z":200,"faction":"US","type":"FOB"},'
        '{"name":"Bravo","x":300,"z":400,"faction":"FIA","type":"POI","poiType":"Radio Tower"}]}'
    ).encode()

    payload = decode_body(raw, "application/x-www-form-urlencoded")
    snapshot = parse_territory_payload(payload)

    assert [b.name for b in snapshot.bases] == ["Alpha", "Bravo"]
    assert snapshot.bases[1].poi_type == "Radio Tower"


def test_plain_text_and_json_bodies() -> None:
    assert parse_territory_payload(decode_body(RAW_JSON.encode(), "text/plain")).bases[0].name == "Alpha"
    assert parse_territory_payload(decode_body(RAW_JSON.encode(), "application/json; charset=utf-8")).bases[0].x == 100


def test_regular_form_fields_are_nested() -> None:
    assert decode_form_body("a=1&b[c]=2&b[d][e]=3") == {"a": "1", "b": {"c": "2", "d": {"e": "3"}}}


def test_missing_fields_get_defaults() -> None:
    snapshot = parse_territory_payload('{"bases":[{"x":1,"z":2}]}')
    base = snapshot.bases[0]

    assert base.display_name == "Unknown"
    assert base.faction == "Neutral"


@pytest.mark.parametrize(
    "payload",
    [
        "{not json",
        '{"bases":',
        {'{"bases":': {"a": "", "b": ""}},
        {'{"bases":': {"{broken": ""}},
        {"something": "else"},
        '[{"name":"Alpha"}]',
        '{"bases": "Alpha"}',
        '{"bases": ["Alpha"]}',
        42,
    ],
)
def test_malformed_payloads_are_rejected(payload) -> None:
    with pytest.raises(TerritoryPayloadError):
        parse_territory_payload(payload)


def test_invalid_json_body_is_rejected() -> None:
    with pytest.raises(TerritoryPayloadError):
        decode_body(b"{oops", "application/json")
    with pytest.raises(TerritoryPayloadError):
        decode_body(b"\xff\xfe", "text/plain")


@pytest.mark.parametrize("constant", ["NaN", "Infinity", "-Infinity"])
def test_non_finite_numbers_are_rejected(constant) -> None:
    body = f'{{"bases":[{{"name":"Alpha","x":100,"z":200,"hp":{constant}}}]}}'

    with pytest.raises(TerritoryPayloadError):
        decode_body(body.encode(), "application/json")
    with pytest.raises(TerritoryPayloadError):
        parse_territory_payload(body)
    with pytest.raises(TerritoryPayloadError):
        parse_territory_payload(decode_body(body.encode(), "application/x-www-form-urlencoded"))
