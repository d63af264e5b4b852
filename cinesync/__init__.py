"""CineSync: watch a video in sync with a friend, with a walkie-talkie."""
