from __future__ import annotations

STYLESHEET_NAME = "style.css"

STYLE_CSS = """\
body {
  font-family: -apple-system, BlinkMacSystemFont, "Segoe UI", Roboto, Helvetica, Arial, sans-serif;
  line-height: 1.6;
  margin: 0 auto;
  max-width: 45em;
  padding: 1em;
}

.chapter-number {
  font-weight: 500;
  margin: 0.25em 0 0;
  padding: 0;
}

h1 {
  font-size: 2em;
  font-weight: 700;
  line-height: 1.1;
  margin: 0 0 0.5em;
}

h2 {
  font-size: 1.4em;
  font-weight: 600;
  line-height: 1.3;
  margin: 1.5em 0 0.5em;
}

h3 {
  color: #333;
  font-size: 1.25em;
  font-weight: 600;
  line-height: 1.3;
  margin: 1.2em 0 0.5em;
}

h4, h5, h6 {
  font-size: 1.1em;
  font-weight: 600;
  line-height: 1.3;
  margin: 1em 0 0.5em;
}

img {
  display: block;
  height: auto;
  margin: 1.5em 0;
  max-width: 100%;
}

figure {
  margin: 2em 0;
  text-align: center;
}

figure img {
  margin: 0 auto;
}

ul, ol {
  margin: 1em 0;
  padding-left: 2em;
}

li {
  margin: 0.5em 0;
}

a {
  color: #0066cc;
  text-decoration: none;
}

dl dt {
  font-weight: 600;
  margin-top: 1em;
}

dl dd {
  margin: 0.25em 0 0 1.5em;
}

.author-biography {
  font-style: italic;
  margin-top: 2em;
}

.table-of-contents {
  margin: 2em 0;
}

.table-of-contents ol {
  list-style: none;
  padding: 0;
}

.table-of-contents li {
  margin: 0.15em 0;
}

.cover {
  padding: 2em;
  text-align: center;
}

.cover img {
  height: auto;
  margin: 0 auto 2em;
  max-width: 100%;
}
"""

__all__ = ["STYLESHEET_NAME", "STYLE_CSS"]
