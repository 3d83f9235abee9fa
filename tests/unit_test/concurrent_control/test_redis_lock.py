"""
Unit tests for the Redis-based object lock.

Redis is mocked, so no server is needed. Covers acquire/release, retry and
timeout handling, the compare-and-delete release script and failure cleanup.
"""

from unittest.mock import Mock, patch

import pytest

from stackpilot.concurrent_control import RedisLock, ThreadingLock, create_lock, object_lock_key


def _client(set_result=True, sha="sha123"):
    client = Mock()
    client.ping.return_value = True
    client.script_load.return_value = sha
    client.set.return_value = set_result
    client.evalsha.return_value = 1
    client.eval.return_value = 1
    return client


class TestRedisLockInitialization:
    def test_defaults(self):
        lock = RedisLock(key="test_key")
        assert lock._key == "test_key"
        assert lock._redis_url == "redis://localhost:6379"
        assert lock._expire_time == 30
        assert lock._retry_times == 3
        assert lock._redis_client is None
        assert lock._lock_value is None

    def test_empty_key(self):
        with pytest.raises(ValueError, match="Redis lock key is required"):
            RedisLock(key="")

    def test_factory(self):
        lock = create_lock("redis", key="factory_test", expire_time=60)
        assert isinstance(lock, RedisLock)
        assert lock._expire_time == 60
        assert isinstance(create_lock("threading", key="local", expire_time=60), ThreadingLock)
        with pytest.raises(ValueError, match="Unknown lock type"):
            create_lock("zookeeper", key="x")

    def test_object_lock_key(self):
        assert object_lock_key("Glance", "default", "glance") == "stackpilot:reconcile:Glance:default:glance"


class TestRedisLockOperations:
    @patch("stackpilot.concurrent_control.redis_lock.redis")
    def test_acquire_and_release(self, mock_redis_module):
        client = _client()
        mock_redis_module.from_url.return_value = client

        lock = RedisLock(key="obj")
        assert lock.acquire() is True
        assert lock.is_locked()
        assert len(lock._lock_value) == 36

        args, kwargs = client.set.call_args
        assert args[0] == "obj"
        assert kwargs["nx"] is True
        assert kwargs["ex"] == 30

        value = lock._lock_value
        lock.release()
        assert not lock.is_locked()
        # Compare-and-delete on our own value only
        client.evalsha.assert_called_once_with("sha123", 1, "obj", value)

    @patch("stackpilot.concurrent_control.redis_lock.redis")
    def test_context_manager_releases_on_error(self, mock_redis_module):
        mock_redis_module.from_url.return_value = _client()
        lock = RedisLock(key="obj")

        with pytest.raises(ValueError):
            with lock:
                assert lock.is_locked()
                raise ValueError("tick failed")
        assert not lock.is_locked()

    @patch("stackpilot.concurrent_control.redis_lock.redis")
    def test_held_elsewhere_with_zero_timeout(self, mock_redis_module):
        client = _client(set_result=None)
        mock_redis_module.from_url.return_value = client

        lock = RedisLock(key="obj", retry_delay=0.01)
        assert lock.acquire(timeout=0) is False
        assert client.set.call_count == 1
        assert not lock.is_locked()

    @patch("stackpilot.concurrent_control.redis_lock.redis")
    def test_retry_exhaustion(self, mock_redis_module):
        client = _client(set_result=None)
        mock_redis_module.from_url.return_value = client

        lock = RedisLock(key="obj", retry_times=2, retry_delay=0.01)
        assert lock.acquire() is False
        assert client.set.call_count == 3

    @patch("stackpilot.concurrent_control.redis_lock.redis")
    def test_retry_then_success(self, mock_redis_module):
        client = _client()
        client.set.side_effect = [None, True]
        mock_redis_module.from_url.return_value = client

        lock = RedisLock(key="obj", retry_delay=0.01)
        assert lock.acquire() is True
        assert client.set.call_count == 2

    @patch("stackpilot.concurrent_control.redis_lock.redis")
    def test_eval_fallback_without_script(self, mock_redis_module):
        client = _client(sha=None)
        mock_redis_module.from_url.return_value = client

        lock = RedisLock(key="obj")
        lock.acquire()
        lock.release()
        client.evalsha.assert_not_called()
        script = client.eval.call_args[0][0]
        assert "redis.call" in script
        assert client.eval.call_args[0][1:3] == (1, "obj")


class TestRedisLockErrorHandling:
    @patch("stackpilot.concurrent_control.redis_lock.redis")
    def test_connection_failure(self, mock_redis_module):
        client = _client()
        client.ping.side_effect = Exception("Connection refused")
        mock_redis_module.from_url.return_value = client

        with pytest.raises(ConnectionError, match="Cannot connect to Redis"):
            RedisLock(key="obj").acquire()

    @patch("stackpilot.concurrent_control.redis_lock.redis")
    def test_set_failure_counts_as_not_acquired(self, mock_redis_module):
        client = _client()
        client.set.side_effect = Exception("READONLY")
        mock_redis_module.from_url.return_value = client

        lock = RedisLock(key="obj", retry_times=1, retry_delay=0.01)
        assert lock.acquire() is False
        assert not lock.is_locked()

    @patch("stackpilot.concurrent_control.redis_lock.redis")
    def test_release_without_acquire(self, mock_redis_module):
        client = _client()
        mock_redis_module.from_url.return_value = client

        RedisLock(key="obj").release()
        mock_redis_module.from_url.assert_not_called()
        client.evalsha.assert_not_called()

    @patch("stackpilot.concurrent_control.redis_lock.redis")
    def test_release_failure_clears_local_state(self, mock_redis_module):
        client = _client()
        client.evalsha.side_effect = Exception("Release failed")
        mock_redis_module.from_url.return_value = client

        lock = RedisLock(key="obj")
        lock.acquire()
        lock.release()
        assert not lock.is_locked()
        assert lock._lock_value is None

    @patch("stackpilot.concurrent_control.redis_lock.redis")
    def test_close(self, mock_redis_module):
        client = _client()
        mock_redis_module.from_url.return_value = client

        lock = RedisLock(key="obj")
        lock.acquire()
        lock.release()
        lock.close()
        client.close.assert_called_once()
        assert lock._redis_client is None
