"""Pytest configuration and fixtures."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from gowalker.models import Source

GREET_GO = b"""// Copyright 2024 The Greet Authors.

// Package greet says hello.
//
// It is a tiny package used by the walker tests.
package greet

import (
\t"fmt"
\t"strings"

\t"example.com/other/pkg"
)

// Version is the package version.
const Version = "1.0"

const internal = 3

// Greeter greets people.
type Greeter struct {
\tName string
}

// NewGreeter returns a Greeter for name.
func NewGreeter(name string) *Greeter {
\treturn &Greeter{Name: name}
}

// Hello returns the greeting.
func (g *Greeter) Hello() string {
\treturn fmt.Sprintf("hello %s", strings.TrimSpace(g.Name))
}

func (g Greeter) secret() int { return pkg.Value }

// Shout prints loudly.
func Shout(s string) {
\tfmt.Println(strings.ToUpper(s))
}

// BUG(ann): Shout ignores locale rules.
"""

GREET_TEST_GO = b"""package greet_test

import (
\t"fmt"

\t"example.com/greet"
)

func ExampleGreeter_Hello() {
\tg := greet.NewGreeter("go")
\tfmt.Println(g.Hello())
\t// Output: hello go
}

func ExampleShout() {
\tgreet.Shout("hi")
}
"""


@pytest.fixture
def greet_sources():
    """A small Go package with one test file and a README."""
    base = "https://github.com/owner/greet/blob/master/"
    return [
        Source(name="greet.go", browse_url=base + "greet.go", data=GREET_GO),
        Source(name="greet_test.go", browse_url=base + "greet_test.go", data=GREET_TEST_GO),
        Source(name="README.md", browse_url=base + "README.md", data=b"# greet\n"),
    ]


def make_response(status_code=200, json_data=None, content=b"", text=""):
    """MagicMock standing in for an ``httpx.Response``."""
    resp = MagicMock()
    resp.status_code = status_code
    resp.content = content
    resp.text = text or content.decode("utf-8", errors="replace")
    if json_data is None:
        resp.json.side_effect = ValueError("no JSON")
    else:
        resp.json.return_value = json_data
    return resp


def make_client(routes: dict, default=None):
    """AsyncMock client whose ``get`` answers by URL substring.

    Longer keys win, so ``.../commits/master`` can be routed apart from the
    repository root.
    """
    fallback = default or make_response(404)

    def route_get(url, **kwargs):
        for key in sorted(routes, key=len, reverse=True):
            if key in url:
                return routes[key]
        return fallback

    client = AsyncMock()
    client.get = AsyncMock(side_effect=route_get)
    client.__aenter__.return_value = client
    client.__aexit__.return_value = None
    return client
