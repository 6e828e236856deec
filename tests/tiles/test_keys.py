"""Tests for cache key derivation."""

from tiles.keys import derive_cache_key

PREFIX = 'http://origin/toner/'


class TestDeriveCacheKey:
    """Tests for derive_cache_key."""

    def test_prefix_replaced_by_namespace(self):
        key = derive_cache_key('offline-map-tiles', 'http://origin/toner/3/4/5.png', PREFIX)
        assert key == 'offline-map-tiles/3/4/5.png'

    def test_deterministic(self):
        url = 'http://origin/toner/12/2048/1361.png'
        keys = {derive_cache_key('ns', url, PREFIX) for _ in range(10)}
        assert keys == {'ns/12/2048/1361.png'}

    def test_url_without_prefix_kept_whole(self):
        url = 'https://other.example.com/3/4/5.png'
        assert derive_cache_key('ns', url, PREFIX) == 'ns' + url

    def test_empty_prefix_never_matches(self):
        url = 'http://origin/toner/3/4/5.png'
        assert derive_cache_key('ns', url, '') == 'ns' + url

    def test_only_first_occurrence_replaced(self):
        url = 'http://origin/toner/http://origin/toner/1.png'
        assert derive_cache_key('ns', url, PREFIX) == 'ns/http://origin/toner/1.png'

    def test_distinct_urls_distinct_keys(self):
        a = derive_cache_key('ns', 'http://origin/toner/3/4/5.png', PREFIX)
        b = derive_cache_key('ns', 'http://origin/toner/3/5/4.png', PREFIX)
        assert a != b
