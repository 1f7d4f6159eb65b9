"""chapterreel — manifest-driven narrated chapter videos.

Render each chapter of a project (one still image with a Ken Burns
zoom, a speech track, optional background music) to its own segment
with ffmpeg, then stream-copy the segments into one final video.
"""
