"""
In-page scripts evaluated against the search engine results page.

Every script is a function body receiving ``args``; extraction scripts return
a JSON string so the decoder sees one container shape regardless of engine.
"""

# Collects organic results once at least ``minResults`` are present or
# ``timeoutMs`` elapses. Each record carries title, link, name (site name)
# and description.
_FETCH_RESULTS = """
const fetchResults = async (minResults, timeoutMs, maxResults) => {
    const collect = () => Array.from(document.querySelectorAll('#search a[href] h3, #rso a[href] h3'))
        .map((heading) => {
            const anchor = heading.closest('a');
            const container = anchor.closest('[data-hveid], .g') || anchor.parentElement;
            const name = container && container.querySelector('.VuuXrf, cite');
            const snippet = container && container.querySelector('.VwiC3b, [data-sncf], .IsZvec');
            return {
                title: heading.innerText,
                link: anchor.getAttribute('href'),
                name: name ? name.innerText : null,
                description: snippet ? snippet.innerText : null,
            };
        });
    const deadline = Date.now() + timeoutMs;
    let results = collect();
    while (results.length < minResults && Date.now() < deadline) {
        await new Promise((resolve) => setTimeout(resolve, 100));
        results = collect();
    }
    return JSON.stringify(results.slice(0, maxResults));
};
"""

# Follows the engine's "search instead for" link when the query was
# autocorrected, so the settled page shows results for the literal query.
_FOLLOW_ORIGINAL_SPELLING = """
const original = document.querySelector('#fprs > a.spell_orig');
if (original && original.href) {
    window.location.href = original.href;
}
"""

EXTRACT_RESULTS_SCRIPT = (
    _FETCH_RESULTS
    + _FOLLOW_ORIGINAL_SPELLING
    + "return await fetchResults(args.minResults, args.timeoutMs, args.maxResults);"
)

CURRENT_RESULTS_SCRIPT = (
    _FETCH_RESULTS + "return await fetchResults(args.minResults, args.timeoutMs, args.maxResults);"
)

# Replaces the query in the loaded page's search box and submits the form.
# Submission is deferred so the evaluation returns before the page unloads.
SEARCH_BAR_SCRIPT = """
const field = document.querySelector('textarea[name="q"], input[name="q"]');
if (!field || !field.form) {
    return false;
}
field.value = args.query;
const form = field.form;
setTimeout(() => form.submit(), 0);
return true;
"""

# Links of the visual-match panel on a reverse image search result page.
IMAGE_MATCH_LINKS_SCRIPT = """
const panel = document.querySelector('[data-video-autoplay-mode="3"]') || document.body;
const links = Array.from(panel.querySelectorAll('[href]')).map((element) => ({
    title: element.getAttribute('aria-label') || element.innerText || null,
    link: element.href,
}));
return JSON.stringify(links);
"""
