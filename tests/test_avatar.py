"""Tests for avatar expression mapping and speech."""

import random

import pytest
from pydantic import ValidationError

from companion_agent.avatar.expression import (
    AvatarPresence,
    analyze_sentiment,
    dominant_emotion,
    emotion_vector_for,
    generate_gesture,
    render,
)
from companion_agent.avatar.models import AvatarConfig, AvatarEmotion, AvatarGesture, AvatarState
from companion_agent.avatar.speech import (
    DEFAULT_VOICES,
    RESPONSE_BANK,
    LogSpeechOutput,
    build_speech_request,
    replies_for,
    select_reply,
    select_voice,
)
from companion_agent.models import EmotionalState, EmotionLabel


class TestDominantEmotion:
    def test_tie_breaks_by_priority(self):
        emotion = AvatarEmotion(joy=0.5, empathy=0.5, concern=0, curiosity=0, neutral=0.5)
        assert dominant_emotion(emotion) == "joy"

    def test_clear_maximum_wins(self):
        emotion = AvatarEmotion(joy=0.2, empathy=0.2, concern=0.2, curiosity=0.9, neutral=0.1)
        assert dominant_emotion(emotion) == "curiosity"

    def test_all_equal_is_joy(self):
        emotion = AvatarEmotion(joy=0.4, empathy=0.4, concern=0.4, curiosity=0.4, neutral=0.4)
        assert dominant_emotion(emotion) == "joy"

    def test_empathy_beats_neutral_on_tie(self):
        emotion = AvatarEmotion(joy=0.1, empathy=0.7, concern=0.0, curiosity=0.0, neutral=0.7)
        assert dominant_emotion(emotion) == "empathy"


class TestRender:
    def test_render_is_pure(self):
        state = AvatarState(
            emotion=AvatarEmotion(concern=0.9),
            gesture=AvatarGesture(head_tilt=0.4, head_nod=-0.2, eyebrow_raise=0.5, smile=0.3, blink=True),
        )
        before = state.model_copy(deep=True)
        first = render(state)
        assert render(state) == first
        assert render(state) == first
        assert state == before

    def test_render_values(self):
        state = AvatarState(gesture=AvatarGesture(head_tilt=1.0, head_nod=0.5, eyebrow_raise=1.0, smile=0.5))
        params = render(state)
        assert params.head_rotation_y == pytest.approx(0.3)
        assert params.head_rotation_x == pytest.approx(0.1)
        assert params.eyebrow_y == pytest.approx(0.5)
        assert params.mouth_scale_y == pytest.approx(1.15)
        assert params.eye_scale_y == 1.0

    def test_speaking_uses_lip_sync(self):
        params = render(AvatarState(speaking=True, lip_sync=1.0))
        assert params.mouth_scale_y == pytest.approx(1.5)

    def test_blink_closes_eyes(self):
        assert render(AvatarState(gesture=AvatarGesture(blink=True))).eye_scale_y == pytest.approx(0.1)

    def test_head_colour_follows_dominant_emotion(self):
        params = render(AvatarState(emotion=AvatarEmotion(joy=0, empathy=0, concern=1, curiosity=0, neutral=0)))
        assert params.dominant_emotion == "concern"
        assert params.head_color == "#f5d0c5"

    def test_to_dict(self):
        data = render(AvatarState()).to_dict()
        assert set(data) >= {"head_rotation_x", "mouth_scale_y", "head_color", "dominant_emotion"}


class TestGestures:
    def test_idle_gestures_within_bounds(self):
        rng = random.Random(1)
        for step in range(200):
            g = generate_gesture(rng, step * 0.1)
            assert -0.15 <= g.head_tilt <= 0.15
            assert abs(g.head_nod) <= 0.1 + 1e-9
            assert g.eyebrow_raise in (0.0, 0.5)
            assert 0.1 - 1e-9 <= g.smile <= 0.3 + 1e-9

    def test_gesture_values_are_clamped(self):
        g = AvatarGesture(head_tilt=3, head_nod=-3, eyebrow_raise=2, smile=-1)
        assert (g.head_tilt, g.head_nod, g.eyebrow_raise, g.smile) == (1.0, -1.0, 1.0, 0.0)


class TestPresence:
    def test_partial_updates_merge(self):
        presence = AvatarPresence()
        presence.update_emotion({"joy": 0.9})
        presence.update_gesture({"smile": 0.6})
        state = presence.snapshot()
        assert state.emotion.joy == 0.9
        assert state.emotion.empathy == 0.5
        assert state.gesture.smile == 0.6

    def test_stop_speaking_resets_lip_sync(self):
        presence = AvatarPresence()
        presence.set_speaking(True)
        presence.update_lip_sync(0.8)
        presence.set_speaking(False)
        assert presence.snapshot().lip_sync == 0.0

    def test_snapshot_is_a_copy(self):
        presence = AvatarPresence()
        snap = presence.snapshot()
        presence.update_emotion({"joy": 1.0})
        assert snap.emotion.joy == 0.3

    def test_sad_user_draws_empathy(self):
        vector = emotion_vector_for(EmotionalState(primary="sadness", intensity=0.9))
        assert dominant_emotion(vector) == "empathy"

    def test_reply_sentiment(self):
        assert dominant_emotion(analyze_sentiment("That's wonderful news!")) == "joy"
        assert analyze_sentiment("I understand how you feel").empathy == 0.8


class TestSpeech:
    @pytest.mark.parametrize("label", list(RESPONSE_BANK))
    def test_bank_has_replies(self, label):
        assert select_reply(label, random.Random(0)) in RESPONSE_BANK[label]

    def test_unknown_label_falls_back_to_neutral(self):
        assert replies_for("bewildered") == RESPONSE_BANK[EmotionLabel.NEUTRAL]
        assert replies_for(EmotionLabel.SURPRISE) == RESPONSE_BANK[EmotionLabel.NEUTRAL]

    def test_request_uses_avatar_voice(self):
        config = AvatarConfig().merged({"voice": {"pitch": 1.4, "speed": 0.8, "language": "en"}})
        request = build_speech_request("hello there friend", config)
        assert request.pitch == 1.4
        assert request.rate == 0.8
        assert request.estimated_duration == pytest.approx(3 / (2.5 * 0.8))

    def test_voice_selection_by_gender_and_language(self):
        male = AvatarConfig().merged({"appearance": {"gender": "male"}})
        assert select_voice(DEFAULT_VOICES, male).name == "en-US male"
        spanish = AvatarConfig().merged({"voice": {"language": "es"}, "appearance": {"gender": "female"}})
        assert select_voice(DEFAULT_VOICES, spanish).name == "es-ES female"
        unknown = AvatarConfig().merged({"voice": {"language": "ja"}})
        assert select_voice(DEFAULT_VOICES, unknown) == DEFAULT_VOICES[0]

    def test_invalid_voice_rejected(self):
        with pytest.raises(ValidationError):
            AvatarConfig().merged({"voice": {"pitch": 5}})

    @pytest.mark.asyncio
    async def test_log_output_counts(self):
        output = LogSpeechOutput()
        await output.speak(build_speech_request("hi", AvatarConfig()))
        assert output.spoken == 1
