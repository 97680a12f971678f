"""
Tests for the in-memory request throttle used by the OTP routes.
"""

from phoneauth.core.dependencies import RequestThrottle


class FakeTimer:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now


class TestRequestThrottle:
    def test_allows_up_to_limit_then_reports_wait(self):
        timer = FakeTimer()
        throttle = RequestThrottle(3, 300, timer=timer)

        assert [throttle.hit("a") for _ in range(3)] == [0, 0, 0]
        timer.now += 100
        assert throttle.hit("a") == 200

    def test_window_slides(self):
        timer = FakeTimer()
        throttle = RequestThrottle(2, 60, timer=timer)

        throttle.hit("a")
        timer.now += 30
        throttle.hit("a")
        timer.now += 30
        # the first hit has aged out, the second has not
        assert throttle.hit("a") == 0
        assert throttle.hit("a") == 30

    def test_rejected_hits_do_not_extend_the_window(self):
        timer = FakeTimer()
        throttle = RequestThrottle(1, 10, timer=timer)

        throttle.hit("a")
        for _ in range(5):
            timer.now += 1
            assert throttle.hit("a") > 0
        timer.now += 5
        assert throttle.hit("a") == 0

    def test_keys_are_independent(self):
        throttle = RequestThrottle(1, 60, timer=FakeTimer())

        assert throttle.hit("otp_send:1.2.3.4:+15551234567") == 0
        assert throttle.hit("otp_send:1.2.3.4:+15551234567") == 60
        assert throttle.hit("otp_send:1.2.3.4:+442071838750") == 0
        assert throttle.hit("otp_send:5.6.7.8:+15551234567") == 0

    def test_wait_is_at_least_one_second(self):
        timer = FakeTimer()
        throttle = RequestThrottle(1, 10, timer=timer)

        throttle.hit("a")
        timer.now += 9.9
        assert throttle.hit("a") == 1

    def test_stale_keys_swept(self, monkeypatch):
        monkeypatch.setattr(RequestThrottle, "_SWEEP_THRESHOLD", 2)
        timer = FakeTimer()
        throttle = RequestThrottle(1, 10, timer=timer)

        for key in ("a", "b", "c"):
            throttle.hit(key)
        timer.now += 11
        throttle.hit("d")

        assert set(throttle._hits) == {"d"}
