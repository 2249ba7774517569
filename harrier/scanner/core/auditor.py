"""
Auditor for Harrier

Submits every in-scope element of a page with a seed value appended to
each input. Mutated requests are trainable, so the Trainer sees whatever
new surface their responses reveal.
"""

from typing import List
import logging

from harrier.scanner.core.elements import AuditableElement, Cookie, Form, Header, Link
from harrier.scanner.core.requester import AsyncRequester, Request, RequestMethod
from harrier.scanner.core.scope import ScopeFilter

logger = logging.getLogger(__name__)


class Auditor:
    """Queues trainable mutation requests for the elements of a page."""

    SEED = 'harrier_seed'

    def __init__(self, requester: AsyncRequester, scope: ScopeFilter, seed: str = SEED):
        self.requester = requester
        self.scope = scope
        self.seed = seed
        self.stats = {'elements_audited': 0, 'mutations_sent': 0, 'elements_skipped': 0}

    def audit(self, page) -> List[Request]:
        """Queue mutations for every element of ``page``; returns the queued requests."""
        requests = []

        for element in page.elements():
            if not self.scope.element_in_scope(element):
                self.stats['elements_skipped'] += 1
                continue

            mutations = self._mutations(element)
            for request in mutations:
                requests.append(self.requester.queue(request))

            self.stats['elements_audited'] += 1
            self.stats['mutations_sent'] += len(mutations)

        logger.debug(f"Queued {len(requests)} mutations for {page.url}")
        return requests

    def _mutations(self, element: AuditableElement) -> List[Request]:
        if isinstance(element, Form):
            return self._form_mutations(element)
        if isinstance(element, Link):
            return self._input_mutations(element, RequestMethod.GET)
        if isinstance(element, Cookie):
            return [self._request(element.action, cookies={element.name: element.value + self.seed})]
        if isinstance(element, Header):
            return [self._request(element.action, headers={element.name: element.value + self.seed})]
        return []

    def _form_mutations(self, form: Form) -> List[Request]:
        method = RequestMethod.POST if form.method == 'POST' else RequestMethod.GET
        return self._input_mutations(form, method, names={f.name for f in form.injectable_fields})

    def _input_mutations(self, element: AuditableElement, method: RequestMethod, names=None) -> List[Request]:
        """One request per input, with that input's value seeded."""
        requests = []
        for name, value in element.inputs:
            if names is not None and name not in names:
                continue
            data = element.parameters
            data[name] = value + self.seed
            requests.append(self._request(element.action, method=method, data=data))
        return requests

    def _request(self, url: str, **options) -> Request:
        # Redirects are left to the Trainer
        return Request(url, train=True, allow_redirects=False, use_cache=False, **options)
