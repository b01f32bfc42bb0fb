import pytest

from logcache.static_lookup import StaticLookup


class _FakeHasher:
    def __init__(self):
        self.value = 0
        self.seen = []

    def __call__(self, source_id):
        self.seen.append(source_id)
        return self.value


@pytest.mark.parametrize(
    "hash_value, expected",
    [
        (0, 0),
        (4611686018427387902, 0),
        (4611686018427387903, 1),
        (9223372036854775805, 1),
        (9223372036854775806, 2),
        (13835058055282163708, 2),
        (13835058055282163709, 3),
        (18446744073709551615, 3),
    ],
)
def test_associates_indexes_for_each_route(hash_value, expected):
    hasher = _FakeHasher()
    lookup = StaticLookup(4, hasher)
    hasher.value = hash_value
    assert lookup.lookup("source-a") == expected
    assert hasher.seen == ["source-a"]


def test_single_route_covers_everything():
    hasher = _FakeHasher()
    lookup = StaticLookup(1, hasher)
    hasher.value = 18446744073709551615
    assert lookup.lookup("x") == 0


@pytest.mark.parametrize("routes", [0, -1])
def test_rejects_invalid_number_of_routes(routes):
    with pytest.raises(ValueError):
        StaticLookup(routes, lambda s: 0)