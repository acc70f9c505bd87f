"""
Basic RecitEKit usage example.

Demonstrates reconstructing a verse timeline from sparse timings and locating
the active verse for a playback position.
"""

from recitekit import RawTiming, Segment, current_segment_index, normalize_timings, reconstruct_timeline

def main():
    segments = [
        Segment(id=1, key="1:1", text="In the name of Allah, the Entirely Merciful"),
        Segment(id=2, key="1:2", text="All praise is due to Allah"),
        Segment(id=3, key="1:3", text="The Entirely Merciful"),
        Segment(id=4, key="1:4", text="Sovereign of the Day of Recompense"),
    ]

    # Timings as sent by the API: milliseconds, one verse missing
    raw = [
        RawTiming(segment_key="1:1", ordinal=None, start_raw=0),
        RawTiming(segment_key=None, ordinal=2, start_raw=6493),
        RawTiming(segment_key="1:4", ordinal=None, start_raw=15840),
    ]

    anchors = normalize_timings(raw, recording_id=1, duration_hint=22.0)
    print(f"Anchors: {anchors}")

    timeline = reconstruct_timeline(segments, anchors, duration=22.0)
    print(f"Timeline: {[round(t, 2) for t in timeline]}")

    for position in (0.0, 7.5, 12.0, 20.0):
        index = current_segment_index(position, 22.0, segments, timeline)
        print(f"{position:5.1f}s -> {segments[index].key}")

if __name__ == "__main__":
    main()
