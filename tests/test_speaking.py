"""Tests for the speaking signal."""

from slide_narrator.speaking import SpeakingSignal, noise1d


class TestSpeakingSignal:
    def test_notifies_on_change_only(self) -> None:
        signal = SpeakingSignal()
        seen = []
        signal.subscribe(seen.append)
        signal.set(True)
        signal.set(True)
        signal.set(False)
        assert seen == [True, False]

    def test_unsubscribe(self) -> None:
        signal = SpeakingSignal()
        seen = []
        unsubscribe = signal.subscribe(seen.append)
        unsubscribe()
        signal.set(True)
        assert seen == []

    def test_unsubscribe_twice_is_harmless(self) -> None:
        signal = SpeakingSignal()
        seen = []
        unsubscribe = signal.subscribe(seen.append)
        unsubscribe()
        unsubscribe()
        signal.set(True)
        assert seen == []

    def test_silent_amplitude_is_zero(self) -> None:
        assert SpeakingSignal().amplitude(12.3) == 0.0

    def test_speaking_amplitude_in_range(self) -> None:
        signal = SpeakingSignal(clock=lambda: 4.2)
        signal.set(True)
        values = [signal.amplitude(t / 10) for t in range(200)]
        assert all(0.2 <= v <= 0.8 for v in values)
        assert len(set(values)) > 1
        assert signal.amplitude() == signal.amplitude(4.2)


class TestNoise:
    def test_range_and_continuity(self) -> None:
        samples = [noise1d(t / 100) for t in range(1000)]
        assert all(0.0 <= s < 1.0 for s in samples)
        assert max(abs(a - b) for a, b in zip(samples, samples[1:])) < 0.1
