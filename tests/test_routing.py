import pytest

from pubsubmw.routing import broker_order, fnv1a_32, parse_broker_list, preferred_broker

BROKERS = ["localhost:9000", "localhost:9001", "localhost:9002"]
TOPICS = ["temperatura_maquina", "pressao", "falha_motor", "consumo_energia", "x", "ção"]


def test_fnv_empty_is_offset_basis():
    assert fnv1a_32(b"") == 0x811C9DC5


def test_fnv_known_vectors():
    assert fnv1a_32(b"a") == 0xE40C292C
    assert fnv1a_32("foobar") == 0xBF9CF968


def test_fnv_str_equals_utf8_bytes():
    assert fnv1a_32("ção") == fnv1a_32("ção".encode("utf-8"))


@pytest.mark.parametrize("topic", TOPICS)
def test_fnv_fits_32_bits(topic):
    assert 0 <= fnv1a_32(topic) < 2**32


def test_parse_broker_list_trims_and_drops_blanks():
    assert parse_broker_list(" host1:9000 ,, host2:9001 ,") == ["host1:9000", "host2:9001"]


def test_parse_single_broker():
    assert parse_broker_list("localhost:9000") == ["localhost:9000"]


@pytest.mark.parametrize("addr", ["", "   ", ",,", " , , "])
def test_parse_empty_raises(addr):
    with pytest.raises(ValueError, match="broker address is required"):
        parse_broker_list(addr)


def test_order_empty_list():
    assert broker_order([], "pressao") == []


def test_order_single_broker():
    assert broker_order(["only:1"], "pressao") == ["only:1"]


def test_order_empty_topic_keeps_list_order():
    assert broker_order(BROKERS, "") == BROKERS


@pytest.mark.parametrize("topic", TOPICS)
def test_order_is_rotation(topic):
    order = broker_order(BROKERS, topic)
    rotations = [BROKERS[k:] + BROKERS[:k] for k in range(len(BROKERS))]
    assert order in rotations


@pytest.mark.parametrize("topic", TOPICS)
def test_order_starts_at_hash_slot(topic):
    order = broker_order(BROKERS, topic)
    assert BROKERS.index(order[0]) == fnv1a_32(topic) % len(BROKERS)


def test_order_does_not_mutate_input():
    brokers = list(BROKERS)
    broker_order(brokers, "pressao")
    assert brokers == BROKERS


def test_topics_spread_over_brokers():
    firsts = {broker_order(BROKERS, f"topic-{i}")[0] for i in range(100)}
    assert firsts == set(BROKERS)


@pytest.mark.parametrize("topic", TOPICS)
def test_preferred_is_first_in_order(topic):
    assert preferred_broker(BROKERS, topic) == broker_order(BROKERS, topic)[0]


def test_preferred_none_without_brokers():
    assert preferred_broker([], "pressao") is None